"""Accepter install script.

The offerer serves a small bash script so an accepter without sshpair
installed can pair with ``curl ... | bash``. In ``send`` mode the script
posts the accepter's public key; in ``grant`` mode it fetches the
offerer's key and appends it to the accepter's own authorized_keys.
"""

import shlex
from enum import Enum


class InstallMode(Enum):
    SEND = "send"
    GRANT = "grant"

    @classmethod
    def parse(cls, value: str | None) -> "InstallMode":
        try:
            return cls((value or "send").lower())
        except ValueError:
            return cls.SEND


def base_url(host: str, port: int) -> str:
    return f"http://{host}:{port}"


def install_page_url(host: str, port: int, token: str) -> str:
    return f"{base_url(host, port)}/install/{token}"


def oneliner(host: str, port: int, token: str, mode: InstallMode = InstallMode.SEND) -> str:
    """Command an accepter runs to pair."""
    url = f"{base_url(host, port)}/api/install/{token}"
    if mode is InstallMode.GRANT:
        url += "?mode=grant"
    return f"curl -fsSL {shlex.quote(url)} | bash"


_SEND = """\
if [[ ! -f "$HOME/.ssh/id_ed25519.pub" && ! -f "$HOME/.ssh/id_rsa.pub" ]]; then
  ssh-keygen -t ed25519 -N '' -q -f "$HOME/.ssh/id_ed25519" </dev/null
fi
PUBKEY_FILE="$HOME/.ssh/id_ed25519.pub"
[[ -f "$PUBKEY_FILE" ]] || PUBKEY_FILE="$HOME/.ssh/id_rsa.pub"

json_escape() { printf '%s' "$1" | sed -e 's/\\\\/\\\\\\\\/g' -e 's/"/\\\\"/g'; }
PAYLOAD=$(printf '{"pubkey":"%s","user":"%s","hostname":"%s"}' \\
  "$(json_escape "$(tr -d '\\r\\n' < "$PUBKEY_FILE")")" \\
  "$(json_escape "$(whoami)")" \\
  "$(json_escape "$(hostname)")")

curl -fsSL -X POST "$BASE_URL/api/pairing/$TOKEN" \\
  -H 'Content-Type: application/json' -d "$PAYLOAD" >/dev/null \\
  || { echo "Failed to send key" >&2; exit 1; }
echo "Sent public key to $HOST."
"""

_GRANT = """\
OFFERER_PUBKEY=$(curl -fsSL "$BASE_URL/api/publickey?token=$TOKEN") \\
  || { echo "Failed to fetch offerer's public key" >&2; exit 1; }
[[ -n "$OFFERER_PUBKEY" ]] || { echo "Missing offerer public key" >&2; exit 1; }
printf '\\n# sshpair %s offerer@%s\\n%s\\n' "$(date -u +%FT%TZ)" "$HOST" "$OFFERER_PUBKEY" \\
  >> "$HOME/.ssh/authorized_keys"
chmod 700 "$HOME/.ssh"
chmod 600 "$HOME/.ssh/authorized_keys"
echo "Added offerer's key to authorized_keys."
"""


def render_install_script(
    host: str, port: int, token: str, mode: InstallMode = InstallMode.SEND
) -> str:
    """Render the bash script for ``mode``.

    Host and token are shell-quoted; everything else is fixed text.
    """
    header = (
        "#!/usr/bin/env bash\n"
        "set -euo pipefail\n\n"
        f"HOST={shlex.quote(host)}\n"
        f"PORT={int(port)}\n"
        f"TOKEN={shlex.quote(token)}\n"
        'BASE_URL="http://$HOST:$PORT"\n\n'
        'mkdir -p "$HOME/.ssh"\n'
        'chmod 700 "$HOME/.ssh"\n\n'
    )
    body = _GRANT if mode is InstallMode.GRANT else _SEND
    return header + body
