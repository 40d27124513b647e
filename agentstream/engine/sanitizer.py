"""Terminal control sequence stripping for raw subprocess lines.

Removes escape sequences in precedence order:

1. CSI     ESC [ params letter
2. OSC     ESC ] ... BEL
3. DCS/SOS/PM/APC   ESC P|X|^|_ ... ESC \\
4. any other two-character escape
5. C0 control characters (and DEL), except \\n \\t \\r

An unterminated OSC or DCS falls through to rule 4, so only its
two-character introducer is removed and the payload stays as literal
text. Step 5 removes every remaining ESC byte, so sanitize() is
idempotent.
"""
from __future__ import annotations

import re

_ESCAPE_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"          # CSI
    r"|\x1b\][^\x07]*\x07"              # OSC, BEL-terminated
    r"|\x1b[PX^_][\s\S]*?\x1b\\"        # DCS / SOS / PM / APC, ST-terminated
    r"|\x1b[\x20-\x7e]"                 # other two-character escapes
)

_C0_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize(line: str) -> str:
    """Strip terminal escape sequences and control characters from a line."""
    if not line:
        return ""
    if "\x1b" in line:
        line = _ESCAPE_RE.sub("", line)
    return _C0_RE.sub("", line)
