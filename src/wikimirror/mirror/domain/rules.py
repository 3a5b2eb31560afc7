import re
from datetime import datetime, timezone
from urllib.parse import unquote, urlparse

from wikimirror.mirror.domain.errors import InvalidInstantError
from wikimirror.mirror.domain.models import NamespaceKind

ESCAPE_CHAR = "%"
_ESCAPES = {ESCAPE_CHAR: ESCAPE_CHAR * 2, "/": ESCAPE_CHAR + "2"}
_UNESCAPES = {v: k for k, v in _ESCAPES.items()}
_ESCAPE_RE = re.compile(r"[%/]")
_UNESCAPE_RE = re.compile(r"%[%2]")

NAMESPACE_KINDS: dict[int, NamespaceKind] = {
    0: NamespaceKind.NORMAL,
    6: NamespaceKind.FILE,
    14: NamespaceKind.CATEGORY,
}


def escape_title(title: str) -> str:
    """Map a title to a single path component; `%` doubles and `/` becomes `%2`."""
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group()], title)


def unescape_title(name: str) -> str:
    return _UNESCAPE_RE.sub(lambda m: _UNESCAPES[m.group()], name)


def classify_namespace(namespace: int) -> NamespaceKind:
    return NAMESPACE_KINDS.get(int(namespace), NamespaceKind.OTHER)


def resolve_namespace(title: str, numbers: dict[str, int]) -> int:
    prefix, sep, _ = title.partition(":")
    if not sep or not prefix:
        return 0
    return numbers.get(prefix, numbers.get(prefix.strip().replace("_", " "), 0))


def parse_mw_timestamp(value: str) -> int:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def normalize_instant(value: str | int | None, fallback: int | None = None) -> int:
    """Normalize an instant given as epoch s/ms, YYYYMMDD, YYYYMMDDhhmmss or ISO text to epoch seconds.

    Compact dates are read as UTC. Missing or unparseable input falls back to
    ``fallback``; without one, InvalidInstantError is raised.
    """
    if value is not None:
        text = str(value).strip()
        parsed = _parse_instant_text(text) if text else None
        if parsed is not None:
            return parsed
    if fallback is None:
        raise InvalidInstantError(f"Cannot resolve instant from {value!r} and no previous update is known")
    return _to_seconds(int(fallback))


def _parse_instant_text(text: str) -> int | None:
    if text.isdigit():
        if len(text) in (10, 13):
            return _to_seconds(int(text))
        formats = {8: "%Y%m%d", 14: "%Y%m%d%H%M%S"}
        if len(text) not in formats:
            return None
        try:
            parsed = datetime.strptime(text, formats[len(text)])
        except ValueError:
            return None
        return int(parsed.replace(tzinfo=timezone.utc).timestamp())
    try:
        return parse_mw_timestamp(text)
    except ValueError:
        return None


def _to_seconds(epoch: int) -> int:
    if len(str(abs(epoch))) >= 13:
        return epoch // 1000
    return epoch


def image_title(source_url: str) -> str:
    """Path segments of an image URL after the first one, e.g. /images/a/ab/X.png -> a/ab/X.png."""
    segments = [unquote(s) for s in urlparse(source_url).path.split("/") if s]
    if len(segments) > 1:
        segments = segments[1:]
    return "/".join(segments)


def srcset_entries(srcset: str) -> list[tuple[str, str]]:
    """(url, descriptor) pairs of a srcset; a URL runs to the next whitespace, so data: URIs keep their commas."""
    entries: list[tuple[str, str]] = []
    pos, size = 0, len(srcset)
    while pos < size:
        while pos < size and (srcset[pos].isspace() or srcset[pos] == ","):
            pos += 1
        end = pos
        while end < size and not srcset[end].isspace():
            end += 1
        if end == pos:
            break
        url, pos = srcset[pos:end], end
        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            comma = srcset.find(",", pos)
            comma = size if comma == -1 else comma
            descriptor, pos = srcset[pos:comma].strip(), comma + 1
        entries.append((url, descriptor))
    return entries


def split_srcset(srcset: str) -> list[str]:
    return [url for url, _ in srcset_entries(srcset)]


def article_title_from_path(path: str, article_path: str) -> str | None:
    if not path.startswith(article_path):
        return None
    title = unquote(path[len(article_path):]).replace("_", " ")
    return title or None
