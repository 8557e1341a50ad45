"""
Environment File Parser

Parses dotenv-style files into the ordered, de-duplicated list of
environment variables that gets encrypted for a CVM.

Grammar (line by line):
- blank lines and lines starting with '#' are skipped
- the key is everything before the first '=' outside quotes; a '#' outside
  quotes before any '=' makes the line a comment
- an inline comment starts at a '#' outside quotes that opens the value or
  follows whitespace
- values wrapped in matching ", ' or ` keep their inner text verbatim;
  only double-quoted values expand the \\n escape
- unquoted values are trimmed

Malformed lines are skipped, never fatal.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

from cvmdeploy.exceptions import ParseError
from cvmdeploy.models.secrets import EnvVar

QUOTE_CHARS = ('"', "'", "`")


def parse_env(direct_pairs: Optional[List[str]], file_text: str = "") -> List[EnvVar]:
    """
    Merge direct KEY=VALUE pairs with the contents of an env file.

    Args:
        direct_pairs: Pairs given on the command line (split on the first '=')
        file_text: Raw env file contents

    Returns:
        One EnvVar per key, file values overriding direct ones, in
        first-seen order
    """
    env_vars: Dict[str, str] = {}

    for pair in direct_pairs or []:
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if key:
            env_vars[key] = value

    for line in (file_text or "").split("\n"):
        parsed = parse_line(line)
        if parsed is not None:
            key, value = parsed
            env_vars[key] = value

    return [EnvVar(key=key, value=value) for key, value in env_vars.items()]


def load_env_file(
    direct_pairs: Optional[List[str]], path: Optional[Union[str, Path]]
) -> List[EnvVar]:
    """
    Read an env file and parse it together with direct pairs.

    Raises:
        ParseError: If the file cannot be read
    """
    if not path:
        return parse_env(direct_pairs, "")
    return parse_env(direct_pairs, read_text_file(path))


def read_text_file(path: Union[str, Path]) -> str:
    """Read a UTF-8 text file, mapping I/O failures to ParseError."""
    file_path = Path(path).expanduser()
    try:
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(str(file_path), str(e)) from e


def parse_line(line: str):
    """Parse one line into (key, value), or None when it carries no assignment."""
    if line.endswith("\r"):
        line = line[:-1]

    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    delimiter = _find_delimiter(line)
    if delimiter == -1:
        return None

    key = line[:delimiter].strip()
    if not key:
        return None

    value = _strip_inline_comment(line[delimiter + 1 :])
    return key, _unquote(value)


def _find_delimiter(line: str) -> int:
    """Index of the first '=' outside quotes, or -1."""
    quote = ""
    for i, char in enumerate(line):
        if char in QUOTE_CHARS and not _is_escaped(line, i):
            if not quote:
                quote = char
            elif char == quote:
                quote = ""
        elif quote:
            continue
        elif char == "=":
            return i
        elif char == "#":
            return -1
    return -1


def _strip_inline_comment(value: str) -> str:
    quote = ""
    for i, char in enumerate(value):
        if char in QUOTE_CHARS and not _is_escaped(value, i):
            if not quote:
                quote = char
            elif char == quote:
                quote = ""
        elif char == "#" and not quote:
            if i == 0:
                return ""
            if value[i - 1].isspace():
                return value[: i - 1]
    return value


def _unquote(value: str) -> str:
    candidate = value.strip()
    if len(candidate) >= 2:
        first, last = candidate[0], candidate[-1]
        if first in QUOTE_CHARS and last == first and not _is_escaped(
            candidate, len(candidate) - 1
        ):
            inner = candidate[1:-1]
            if first == '"':
                inner = inner.replace("\\n", "\n")
            return inner
    return value.strip()


def _is_escaped(text: str, index: int) -> bool:
    return index > 0 and text[index - 1] == "\\"
