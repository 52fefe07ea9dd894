"""Pattern detector — fixed regex matchers for identity-bearing values.

Every matcher is compiled once.  ``PatternDetector.detect`` is pure: it
never touches the token mapping and can run from any thread.

Categories, highest priority first (priority only breaks ties between
candidates that start at the same offset with the same length):

    FILE_PATH      C:\\Users\\<name>\\...   /home/<name>/...
    USERNAME       DOMAIN\\name, name@DOMAIN, known bare account names
    EMAIL          local@domain.tld
    IPV6           colon-hex groups, :: compression
    IPV4           dotted quad
    COMPUTER_NAME  known host names only
"""

from __future__ import annotations
import ipaddress
import logging
import re
import socket
from collections.abc import Iterable

from .errors import DetectionError
from .types import PiiCategory, PiiMatch

log = logging.getLogger(__name__)

_PRIORITY = {
    PiiCategory.FILE_PATH: 0,
    PiiCategory.USERNAME: 1,
    PiiCategory.EMAIL: 2,
    PiiCategory.IPV6: 3,
    PiiCategory.IPV4: 4,
    PiiCategory.COMPUTER_NAME: 5,
}

# Built-in profile folders that identify nobody
SHARED_PROFILES = frozenset({"public", "default", "default user", "all users"})

_NAME_CHARS = r"[^\\/:*?\"<>|\s]"

# Windows profile path on any drive.  A name with spaces is only accepted
# when a separator follows it, otherwise the name stops at the first space.
_WIN_PROFILE = re.compile(
    r"(?<![A-Za-z])[A-Za-z]:[\\/]Users[\\/]"
    rf"(?P<name>{_NAME_CHARS}+(?: {_NAME_CHARS}+)*(?=[\\/])|{_NAME_CHARS}+)",
    re.IGNORECASE,
)

_UNIX_PROFILE = re.compile(r"(?<![\w.~-])/(?:home|Users)/(?P<name>[^/\s:\"'<>|]+)")

# DOMAIN\name, but never a segment of a path (C:\Windows\System32, \\HOST\share,
# drive-relative C:dir\file).  "Account:CONTOSO\jdoe" is still a username.
_DOMAIN_USER = re.compile(
    r"(?<![\\/\w.$-])(?<!\b[A-Za-z]:)"
    r"[A-Za-z0-9][A-Za-z0-9._-]*\\[A-Za-z0-9._$-]*[A-Za-z0-9_$-]"
    r"(?![\\/\w-])(?!\.\w)"
)

# name@DOMAIN with a single-label domain (UPN short form)
_UPN_SHORT = re.compile(
    r"(?<![\w.%+-])[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?![\w@-])(?!\.\w)"
)

_EMAIL = re.compile(r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b")

# "src:fe80::1" is an address after a label; candidates are validated below
_IPV6 = re.compile(
    r"(?<![0-9A-Za-z.])"
    r"(?:[0-9A-Fa-f]{0,4}:){2,7}"
    r"(?:(?:\d{1,3}\.){3}\d{1,3}|[0-9A-Fa-f]{0,4})"
    r"(?![0-9A-Za-z])"
)

_OCTET = r"(?:25[0-5]|2[0-4]\d|[01]?\d\d?)"
_IPV4 = re.compile(rf"(?<![\d.]){_OCTET}(?:\.{_OCTET}){{3}}(?!\d|\.\d)")


# ------------------------------------------------------------------
# Stateless matchers
# ------------------------------------------------------------------

def _profile_paths(text: str):
    for pattern in (_WIN_PROFILE, _UNIX_PROFILE):
        yield from pattern.finditer(text)


def scan_file_paths(text: str) -> list[PiiMatch]:
    """Flag the account segment of user-profile paths (not the whole path)."""
    matches: list[PiiMatch] = []
    for m in _profile_paths(text):
        name = m.group("name")
        if name.lower() in SHARED_PROFILES:
            continue
        matches.append(PiiMatch(PiiCategory.FILE_PATH, m.start("name"), m.end("name"), name))
    return matches


def scan_usernames(text: str, known_accounts: re.Pattern | None = None,
                   account_names: frozenset[str] = frozenset()) -> list[PiiMatch]:
    """DOMAIN\\name and name@DOMAIN forms, then hinted bare account names."""
    # "Default User\file.txt" inside a profile path is not DOMAIN\name
    shielded = [(m.start(), m.end()) for m in _profile_paths(text)]
    matches = [
        PiiMatch(PiiCategory.USERNAME, m.start(), m.end(), m.group())
        for pattern in (_DOMAIN_USER, _UPN_SHORT)
        for m in pattern.finditer(text)
        if not any(s <= m.start() < e for s, e in shielded)
    ]
    if account_names:
        # a full UPN whose local part is a known account is a username, not mail
        for m in _EMAIL.finditer(text):
            if m.group().split("@", 1)[0].lower() in account_names:
                matches.append(PiiMatch(PiiCategory.USERNAME, m.start(), m.end(), m.group()))
    if known_accounts is not None:
        matches.extend(
            PiiMatch(PiiCategory.USERNAME, m.start(), m.end(), m.group())
            for m in known_accounts.finditer(text)
        )
    return matches


def scan_emails(text: str) -> list[PiiMatch]:
    return [PiiMatch(PiiCategory.EMAIL, m.start(), m.end(), m.group())
            for m in _EMAIL.finditer(text)]


def scan_ipv6(text: str) -> list[PiiMatch]:
    matches: list[PiiMatch] = []
    for m in _IPV6.finditer(text):
        candidate = m.group()
        # "fe80::1:" at the end of a clause keeps its trailing colon
        if candidate.endswith(":") and not candidate.endswith("::"):
            candidate = candidate[:-1]
        if not any(c not in ":." for c in candidate):
            continue
        try:
            ipaddress.IPv6Address(candidate)
        except ValueError:
            continue
        matches.append(PiiMatch(PiiCategory.IPV6, m.start(), m.start() + len(candidate), candidate))
    return matches


def scan_ipv4(text: str) -> list[PiiMatch]:
    return [PiiMatch(PiiCategory.IPV4, m.start(), m.end(), m.group())
            for m in _IPV4.finditer(text)]


def scan_hostnames(text: str, known_hosts: re.Pattern | None) -> list[PiiMatch]:
    if known_hosts is None:
        return []
    return [PiiMatch(PiiCategory.COMPUTER_NAME, m.start(), m.end(), m.group())
            for m in known_hosts.finditer(text)]


def _whole_word_alternation(words: Iterable[str], *, boundary: str, trailing: str | None = None,
                            tail: str = r"(?!\.\w)") -> re.Pattern | None:
    """Compile a case-insensitive whole-token matcher for a hint set.

    ``trailing`` defaults to ``boundary``; ``tail`` is appended after it.
    """
    cleaned = sorted({w.strip() for w in words if w and w.strip()}, key=len, reverse=True)
    if not cleaned:
        return None
    body = "|".join(re.escape(w) for w in cleaned)
    after = trailing if trailing is not None else boundary
    return re.compile(rf"(?<!{boundary})(?:{body})(?!{after}){tail}", re.IGNORECASE)


def local_hostname() -> str | None:
    """Short name of this machine, upper-cased, or None if it is meaningless."""
    name = socket.gethostname().split(".", 1)[0].strip()
    if not name or name.lower() == "localhost":
        return None
    return name.upper()


# ------------------------------------------------------------------
# Detector
# ------------------------------------------------------------------

class PatternDetector:
    """Runs every matcher over a string and resolves overlaps.

    ``known_accounts`` enables bare account-name matching (off when empty,
    ordinary words would otherwise be flagged).  ``known_hosts`` is the only
    source of computer names; the local machine's name is added unless
    ``include_local_hostname`` is False.
    """

    __slots__ = ("_accounts_re", "_account_names", "_hosts_re", "use_presidio", "language")

    def __init__(
        self,
        known_accounts: Iterable[str] = (),
        known_hosts: Iterable[str] = (),
        *,
        include_local_hostname: bool = True,
        use_presidio: bool = False,
        language: str = "en",
    ) -> None:
        accounts = [a for a in known_accounts if a]
        hosts = [h for h in known_hosts if h]
        if include_local_hostname:
            local = local_hostname()
            if local:
                hosts.append(local)
        self._account_names = frozenset(a.strip().lower() for a in accounts)
        # sentence punctuation may follow a name ("for jdoe."); jdoe.smith is another name
        self._accounts_re = _whole_word_alternation(
            accounts, boundary=r"[\w.\\@$-]", trailing=r"[\w\\@$-]",
        )
        # the first label of an FQDN is still the host: WS-042.corp.local
        self._hosts_re = _whole_word_alternation(hosts, boundary=r"[\w-]", tail="")
        self.use_presidio = use_presidio
        self.language = language
        log.debug("detector ready: %d account hints, %d host hints", len(self._account_names), len(hosts))

    def detect(self, text: str | None) -> list[PiiMatch]:
        """Return non-overlapping matches ordered by start offset."""
        if text is None:
            return []
        if not isinstance(text, str):
            raise DetectionError(f"cannot scan a {type(text).__name__}, expected str")
        if not text:
            return []

        candidates: list[PiiMatch] = []
        candidates.extend(scan_file_paths(text))
        candidates.extend(scan_usernames(text, self._accounts_re, self._account_names))
        candidates.extend(scan_emails(text))
        candidates.extend(scan_ipv6(text))
        candidates.extend(scan_ipv4(text))
        candidates.extend(scan_hostnames(text, self._hosts_re))
        matches = resolve_overlaps(candidates)

        if self.use_presidio:
            from .presidio_layer import scan_presidio
            extra = scan_presidio(
                text,
                language=self.language,
                exclude_spans=[(m.start, m.end) for m in matches],
            )
            matches = resolve_overlaps(matches + extra)
        return matches


def resolve_overlaps(candidates: list[PiiMatch]) -> list[PiiMatch]:
    """Keep the earliest-starting, then longest, then highest-priority match."""
    ranked = sorted(
        candidates,
        key=lambda m: (m.start, -(m.end - m.start), _PRIORITY[m.category]),
    )
    taken: list[PiiMatch] = []
    reach = 0
    for m in ranked:
        if m.end <= m.start:
            continue
        if taken and m.start < reach:
            continue
        taken.append(m)
        reach = m.end
    return taken


_DEFAULT = PatternDetector(include_local_hostname=False)


def detect(text: str | None) -> list[PiiMatch]:
    """Scan with the hint-free detector (no bare names, no host names)."""
    return _DEFAULT.detect(text)
