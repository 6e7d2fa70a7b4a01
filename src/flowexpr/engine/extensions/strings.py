"""String methods: JavaScript natives plus workflow data helpers."""

from __future__ import annotations

import base64
import hashlib
import json
import re
import unicodedata
import urllib.parse
from typing import Any

from ..exceptions import EvaluationError
from ..resolver import guard
from ..resolver.values import (
    UNDEFINED,
    is_nullish,
    is_undefined,
    to_integer,
    to_json_compatible,
    to_number,
    to_string,
    truthy,
)
from .registry import MethodTable

methods = MethodTable("string")

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_URL_RE = re.compile(r"https?://[^\s/$.?#][^\s]*", re.IGNORECASE)
_DOMAIN_RE = re.compile(r"^(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}$")
_TAG_RE = re.compile(r"<[^>]*>")
_WORD_RE = re.compile(r"[A-Z]{2,}(?=[A-Z][a-z]+|\b|[0-9_])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


def _slice_bounds(length: int, start: Any, end: Any) -> tuple[int, int]:
    begin = to_integer(start, 0)
    stop = length if is_undefined(end) else to_integer(end, length)
    if begin < 0:
        begin = max(length + begin, 0)
    if stop < 0:
        stop = max(length + stop, 0)
    return min(begin, length), min(stop, length)


def _pad(value: str, target: Any, fill: Any, at_start: bool) -> str:
    width = to_integer(target)
    filler = " " if is_undefined(fill) else to_string(fill)
    if width <= len(value) or filler == "":
        return value
    guard.reserve(width)
    needed = width - len(value)
    padding = (filler * (needed // len(filler) + 1))[:needed]
    return padding + value if at_start else value + padding


def _words(value: str) -> list[str]:
    return _WORD_RE.findall(value)


# =============================================================================
# Properties
# =============================================================================


@methods.property("length", "Number of characters in the string", '"hello".length // 5', "number")
def length(value: str) -> int:
    return len(value)


# =============================================================================
# JavaScript natives
# =============================================================================


@methods.method("at(index)", "Character at index; negative counts from the end", '"abc".at(-1) // "c"')
def at(value: str, index: Any = 0) -> Any:
    i = to_integer(index)
    if i < 0:
        i += len(value)
    return value[i] if 0 <= i < len(value) else UNDEFINED


@methods.method("charAt(index)", "Character at index, or an empty string", '"abc".charAt(1) // "b"')
def char_at(value: str, index: Any = 0) -> str:
    i = to_integer(index)
    return value[i] if 0 <= i < len(value) else ""


@methods.method("charCodeAt(index)", "Unicode code point of the character at index", returns="number")
def char_code_at(value: str, index: Any = 0) -> int | float:
    i = to_integer(index)
    return ord(value[i]) if 0 <= i < len(value) else float("nan")


@methods.method("codePointAt(index)", "Unicode code point at index", returns="number")
def code_point_at(value: str, index: Any = 0) -> Any:
    i = to_integer(index)
    return ord(value[i]) if 0 <= i < len(value) else UNDEFINED


@methods.method("concat(...strings)", "Joins the string with the given values", '"a".concat("b", 1) // "ab1"')
def concat(value: str, *parts: Any) -> str:
    extra = "".join(to_string(p) for p in parts)
    guard.reserve(len(value) + len(extra))
    return value + extra


@methods.method("endsWith(search, length?)", "Whether the string ends with search", returns="boolean")
def ends_with(value: str, search: Any, end: Any = UNDEFINED) -> bool:
    stop = len(value) if is_undefined(end) else max(0, min(to_integer(end), len(value)))
    return value[:stop].endswith(to_string(search))


@methods.method("startsWith(search, position?)", "Whether the string starts with search", returns="boolean")
def starts_with(value: str, search: Any, position: Any = 0) -> bool:
    return value.startswith(to_string(search), max(0, to_integer(position)))


@methods.method("includes(search, position?)", "Whether search occurs in the string", '"abc".includes("b") // true', returns="boolean")
def includes(value: str, search: Any, position: Any = 0) -> bool:
    return to_string(search) in value[max(0, to_integer(position)) :]


@methods.method("indexOf(search, from?)", "First index of search, or -1", returns="number")
def index_of(value: str, search: Any, start: Any = 0) -> int:
    return value.find(to_string(search), max(0, to_integer(start)))


@methods.method("lastIndexOf(search, from?)", "Last index of search, or -1", returns="number")
def last_index_of(value: str, search: Any, start: Any = UNDEFINED) -> int:
    needle = to_string(search)
    if is_undefined(start):
        return value.rfind(needle)
    return value.rfind(needle, 0, max(0, to_integer(start)) + len(needle))


@methods.method("localeCompare(other)", "Negative, zero or positive ordering against other", returns="number")
def locale_compare(value: str, other: Any) -> int:
    other_text = to_string(other)
    return (value > other_text) - (value < other_text)


@methods.method("match(pattern)", "Regular expression match: array of matched groups or null", returns="array")
def match(value: str, pattern: Any) -> Any:
    try:
        found = re.search(to_string(pattern), value)
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression: {e}") from e
    if found is None:
        return None
    return [found.group(0), *(g if g is not None else UNDEFINED for g in found.groups())]


@methods.method("search(pattern)", "Index of the first regular expression match, or -1", returns="number")
def search(value: str, pattern: Any) -> int:
    try:
        found = re.search(to_string(pattern), value)
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression: {e}") from e
    return found.start() if found else -1


@methods.method("normalize(form?)", "Unicode normalization (NFC, NFD, NFKC, NFKD)")
def normalize(value: str, form: Any = "NFC") -> str:
    name = "NFC" if is_undefined(form) else to_string(form)
    if name not in ("NFC", "NFD", "NFKC", "NFKD"):
        raise EvaluationError("The normalization form should be one of NFC, NFD, NFKC, NFKD")
    return unicodedata.normalize(name, value)  # type: ignore[arg-type]


@methods.method("padStart(length, fill?)", "Pads the start to the target length", '"5".padStart(3, "0") // "005"')
def pad_start(value: str, target: Any, fill: Any = UNDEFINED) -> str:
    return _pad(value, target, fill, at_start=True)


@methods.method("padEnd(length, fill?)", "Pads the end to the target length", '"5".padEnd(3, "0") // "500"')
def pad_end(value: str, target: Any, fill: Any = UNDEFINED) -> str:
    return _pad(value, target, fill, at_start=False)


@methods.method("repeat(count)", "String repeated count times", '"ab".repeat(3) // "ababab"')
def repeat(value: str, count: Any) -> str:
    times = to_number(count)
    if times != times or times < 0 or times == float("inf"):
        raise EvaluationError(f"Invalid count value: {to_string(count)}")
    times = int(times)
    guard.reserve(len(value) * times)
    return value * times


@methods.method("replace(search, replacement)", "Replaces the first occurrence of search", '"a-b-c".replace("-", "+") // "a+b-c"')
def replace(value: str, search: Any, replacement: Any) -> str:
    return value.replace(to_string(search), to_string(replacement), 1)


@methods.method("replaceAll(search, replacement)", "Replaces every occurrence of search", '"a-b-c".replaceAll("-", "+") // "a+b+c"')
def replace_all(value: str, search: Any, replacement: Any) -> str:
    needle = to_string(search)
    text = to_string(replacement)
    if needle == "":
        guard.reserve(len(value) * (len(text) + 1))
    return value.replace(needle, text)


@methods.method("slice(start?, end?)", "Section of the string; negative indexes count from the end")
def slice_(value: str, start: Any = 0, end: Any = UNDEFINED) -> str:
    begin, stop = _slice_bounds(len(value), start, end)
    return value[begin:stop]


@methods.method("substring(start, end?)", "Section between two indexes (swapped if reversed)")
def substring(value: str, start: Any = 0, end: Any = UNDEFINED) -> str:
    length_ = len(value)
    begin = max(0, min(to_integer(start), length_))
    stop = length_ if is_undefined(end) else max(0, min(to_integer(end), length_))
    if begin > stop:
        begin, stop = stop, begin
    return value[begin:stop]


@methods.method("substr(start, length?)", "Section of a given length from start")
def substr(value: str, start: Any = 0, count: Any = UNDEFINED) -> str:
    begin = to_integer(start)
    if begin < 0:
        begin = max(len(value) + begin, 0)
    size = len(value) - begin if is_undefined(count) else to_integer(count)
    if size <= 0:
        return ""
    return value[begin : begin + size]


@methods.method("split(separator?, limit?)", "Splits into an array of substrings", '"a,b".split(",") // ["a", "b"]', returns="array")
def split(value: str, separator: Any = UNDEFINED, limit: Any = UNDEFINED) -> list[str]:
    if is_undefined(separator):
        parts = [value]
    else:
        sep = to_string(separator)
        parts = list(value) if sep == "" else value.split(sep)
    if not is_undefined(limit):
        parts = parts[: max(0, to_integer(limit))]
    return parts


@methods.method("toLowerCase()", "Converts to lower case", aliases=("toLocaleLowerCase",))
def to_lower_case(value: str) -> str:
    return value.lower()


@methods.method("toUpperCase()", "Converts to upper case", '"abc".toUpperCase() // "ABC"', aliases=("toLocaleUpperCase",))
def to_upper_case(value: str) -> str:
    return value.upper()


@methods.method("trim()", "Removes leading and trailing whitespace")
def trim(value: str) -> str:
    return value.strip()


@methods.method("trimStart()", "Removes leading whitespace", aliases=("trimLeft",))
def trim_start(value: str) -> str:
    return value.lstrip()


@methods.method("trimEnd()", "Removes trailing whitespace", aliases=("trimRight",))
def trim_end(value: str) -> str:
    return value.rstrip()


@methods.method("toString()", "The string itself", aliases=("valueOf",))
def to_string_(value: str) -> str:
    return value


# =============================================================================
# Workflow data helpers
# =============================================================================


@methods.method("isEmpty()", "Whether the string has no characters", returns="boolean")
def is_empty(value: str) -> bool:
    return value == ""


@methods.method("isNotEmpty()", "Whether the string has at least one character", returns="boolean")
def is_not_empty(value: str) -> bool:
    return value != ""


@methods.method("toNumber()", "Parses the string as a number (NaN when invalid)", '"42".toNumber() // 42', returns="number")
def to_number_(value: str) -> int | float:
    return to_number(value)


@methods.method("toInt()", "Parses the leading integer of the string", aliases=("toInteger",), returns="number")
def to_int(value: str) -> int | float:
    from .numbers import parse_int

    return parse_int(value)


@methods.method("toFloat()", "Parses the leading decimal number of the string", returns="number")
def to_float(value: str) -> int | float:
    from .numbers import parse_float

    return parse_float(value)


@methods.method("toBoolean()", 'False for "", "0", "false" and "no", otherwise true', returns="boolean")
def to_boolean(value: str) -> bool:
    return value.strip().lower() not in ("", "0", "false", "no", "off")


@methods.method("toDateTime()", "Parses the string into a DateTime", '"2024-01-15".toDateTime().year // 2024', aliases=("toDate",), returns="date")
def to_date_time(value: str) -> Any:
    from .dates import to_datetime

    return to_datetime(value)


@methods.method("capitalize()", "Upper-cases the first character", '"hello".capitalize() // "Hello"')
def capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


@methods.method("toTitleCase()", "Capitalizes every word", '"hello world".toTitleCase() // "Hello World"')
def to_title_case(value: str) -> str:
    return re.sub(r"\S+", lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), value)


@methods.method("toSentenceCase()", "Capitalizes the first letter of each sentence")
def to_sentence_case(value: str) -> str:
    lowered = value.lower()
    return re.sub(
        r"(^\s*|[.!?]\s+)([a-z])", lambda m: m.group(1) + m.group(2).upper(), lowered
    )


@methods.method("toSnakeCase()", "Converts to snake_case", '"Hello World".toSnakeCase() // "hello_world"')
def to_snake_case(value: str) -> str:
    return "_".join(word.lower() for word in _words(value))


@methods.method("toKebabCase()", "Converts to kebab-case")
def to_kebab_case(value: str) -> str:
    return "-".join(word.lower() for word in _words(value))


@methods.method("toCamelCase()", "Converts to camelCase", '"hello world".toCamelCase() // "helloWorld"')
def to_camel_case(value: str) -> str:
    words = [word.lower() for word in _words(value)]
    return "".join(words[:1] + [w[:1].upper() + w[1:] for w in words[1:]])


@methods.method("removeTags()", "Strips HTML and XML tags")
def remove_tags(value: str) -> str:
    return _TAG_RE.sub("", value)


@methods.method("replaceSpecialChars()", "Replaces accented characters with ASCII equivalents")
def replace_special_chars(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


@methods.method("urlEncode(allChars?)", "Percent-encodes the string")
def url_encode(value: str, all_chars: Any = False) -> str:
    safe = "" if truthy(all_chars) else "-_.!~*'();/?:@&=+$,#"
    return urllib.parse.quote(value, safe=safe)


@methods.method("urlDecode()", "Decodes percent-encoded text")
def url_decode(value: str) -> str:
    return urllib.parse.unquote(value)


@methods.method("base64Encode()", "Base64-encodes the UTF-8 bytes", aliases=("toBase64",))
def base64_encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


@methods.method("base64Decode()", "Decodes Base64 text to a UTF-8 string", aliases=("fromBase64",))
def base64_decode(value: str) -> str:
    try:
        return base64.b64decode(value, validate=False).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise EvaluationError(f"Invalid base64 string: {e}") from e


@methods.method("hash(algorithm?)", "Hex digest (md5, sha1, sha256, sha384, sha512)", '"abc".hash("sha256")')
def hash_(value: str, algorithm: Any = "md5") -> str:
    name = "md5" if is_undefined(algorithm) else to_string(algorithm).lower().replace("-", "")
    if name not in ("md5", "sha1", "sha224", "sha256", "sha384", "sha512"):
        raise EvaluationError(f"Unsupported hash algorithm: {name}")
    return hashlib.new(name, value.encode("utf-8")).hexdigest()


@methods.method("quote(mark?)", "Wraps the string in quotes, escaping inner quotes")
def quote(value: str, mark: Any = '"') -> str:
    q = '"' if is_undefined(mark) else to_string(mark)
    escaped = value.replace("\\", "\\\\").replace(q, "\\" + q) if q else value
    return f"{q}{escaped}{q}"


@methods.method("isEmail()", "Whether the string is an email address", returns="boolean")
def is_email(value: str) -> bool:
    return _EMAIL_RE.fullmatch(value.strip()) is not None


@methods.method("isUrl()", "Whether the string is an http(s) URL", returns="boolean")
def is_url(value: str) -> bool:
    return _URL_RE.fullmatch(value.strip()) is not None


@methods.method("isDomain()", "Whether the string is a domain name", returns="boolean")
def is_domain(value: str) -> bool:
    return _DOMAIN_RE.match(value.strip()) is not None


@methods.method("isNumeric()", "Whether the string parses as a finite number", returns="boolean")
def is_numeric(value: str) -> bool:
    number = to_number(value)
    return value.strip() != "" and number == number and abs(number) != float("inf")


@methods.method("extractEmail()", "First email address found, or undefined")
def extract_email(value: str) -> Any:
    found = _EMAIL_RE.search(value)
    return found.group(0) if found else UNDEFINED


@methods.method("extractUrl()", "First URL found, or undefined")
def extract_url(value: str) -> Any:
    found = _URL_RE.search(value)
    return found.group(0) if found else UNDEFINED


@methods.method("extractDomain()", "Domain of an email address or URL, or undefined")
def extract_domain(value: str) -> Any:
    text = value.strip()
    if _EMAIL_RE.fullmatch(text):
        return text.split("@", 1)[1]
    parsed = urllib.parse.urlparse(text if "://" in text else f"http://{text}")
    host = parsed.hostname
    return host if host and _DOMAIN_RE.match(host) else UNDEFINED


@methods.method("parseJson()", "Parses the string as JSON", '\'{"a":1}\'.parseJson().a // 1')
def parse_json(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise EvaluationError(f"Invalid JSON: {e.msg}", description=f"at position {e.pos}") from e


@methods.method("toJsonString()", "JSON representation of the string")
def to_json_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def stringify(value: Any, indent: Any = None) -> Any:
    """JSON.stringify with JavaScript conventions (undefined in, undefined out)."""
    if is_undefined(value):
        return UNDEFINED
    spaces: int | str | None = None
    if not is_nullish(indent):
        spaces = indent if isinstance(indent, str) else max(0, min(10, to_integer(indent))) or None
    text = json.dumps(
        to_json_compatible(value),
        ensure_ascii=False,
        indent=spaces,
        separators=None if spaces else (",", ":"),
    )
    guard.reserve(len(text))
    return text


