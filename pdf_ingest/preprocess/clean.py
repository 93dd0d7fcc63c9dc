import re, unicodedata

_SURROGATES = re.compile(r"[\ud800-\udfff]")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x84\x86-\x9f]")
# CRLF, CR, NEL and the Unicode line/paragraph separators
_LINE_ENDS = re.compile(r"\r\n?|[\x85\u2028\u2029]")
# page furniture: "Page 3", "3 of 12", copyright / confidentiality boilerplate
_HEADER_FOOTER = re.compile(
    r"^[ \t]*(page[ \t]*\d+|\d+[ \t]*of[ \t]*\d+|©.*|all rights reserved.*|confidential.*)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_SPACES = re.compile(r"[ \t]+")
_NEWLINES = re.compile(r"\n{3,}")
_LINE_BREAK_HYPHEN = re.compile(r"-\s*\n\s*")

_QUOTES = str.maketrans({
    "\u2018": "'", "\u2019": "'",
    "\u201c": '"', "\u201d": '"',
    "\u2013": "-", "\u2014": "-",
})

def repair_unicode(s: str) -> str:
    """Join split surrogate pairs, drop the unpaired ones, strip NULs, blank other controls."""
    if _SURROGATES.search(s):
        s = s.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "ignore")
    s = s.replace("\x00", "")
    return _CONTROL.sub(" ", s)

def sanitize(s: str | None) -> str:
    if not s:
        return ""
    s = repair_unicode(s)
    s = unicodedata.normalize("NFKC", s)
    s = _LINE_ENDS.sub("\n", s)
    s = _SPACES.sub(" ", s)
    s = "\n".join(line.strip() for line in s.split("\n"))
    # on trimmed lines: strip() removes more whitespace than [ \t]
    s = _HEADER_FOOTER.sub("", s)
    s = _NEWLINES.sub("\n\n", s)
    return s.strip()

def normalize_quotes(s: str) -> str:
    return s.translate(_QUOTES)

def remove_hyphenation(s: str) -> str:
    s = s.replace("\u00ad", "")
    return _LINE_BREAK_HYPHEN.sub("", s)

def full_clean(s: str | None) -> str:
    return remove_hyphenation(normalize_quotes(sanitize(s)))
