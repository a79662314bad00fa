"""
Lookup tables that map free-form skill names onto canonical profile entries.

Every function here is pure and returns ``None`` when the input has no
canonical counterpart; callers decide whether that is an error. Nothing is
ever added to the tables at runtime.
"""
import re
from typing import Dict, Iterable, List, Optional, Tuple

LANGUAGE_ALIASES: Dict[str, Tuple[str, ...]] = {
    "Python": ("python", "python3", "py"),
    "JavaScript": ("javascript", "js", "node", "nodejs", "node.js", "ecmascript"),
    "TypeScript": ("typescript", "ts"),
    "Java": ("java",),
    "C": ("c", "ansi c"),
    "C++": ("c++", "cpp", "cplusplus"),
    "C#": ("c#", "csharp", "c sharp", ".net"),
    "Go": ("go", "golang"),
    "Rust": ("rust", "rs"),
    "Ruby": ("ruby", "rb"),
    "PHP": ("php",),
    "Kotlin": ("kotlin", "kt"),
    "Swift": ("swift",),
    "SQL": ("sql", "postgresql", "mysql", "sqlite"),
}

TOPIC_ALIASES: Dict[str, Tuple[str, ...]] = {
    "Web Development": ("web development", "web dev", "web", "frontend", "backend", "full stack", "fullstack"),
    "Mobile Development": ("mobile development", "mobile", "android", "ios"),
    "Machine Learning": ("machine learning", "ml", "ai", "artificial intelligence", "deep learning"),
    "Data Science": ("data science", "data analysis", "analytics", "data"),
    "DevOps": ("devops", "ci/cd", "infrastructure", "cloud"),
    "Game Development": ("game development", "gamedev", "games"),
    "Security": ("security", "cybersecurity", "infosec"),
    "Blockchain": ("blockchain", "web3", "crypto"),
    "Embedded Systems": ("embedded systems", "embedded", "iot"),
    "Databases": ("databases", "database", "db"),
}

DIFFICULTY_ALIASES: Dict[str, Tuple[str, ...]] = {
    "beginner": ("beginner", "easy", "junior", "novice"),
    "intermediate": ("intermediate", "medium", "mid", "moderate"),
    "advanced": ("advanced", "hard", "senior"),
    "expert": ("expert", "principal", "lead"),
}

_WHITESPACE = re.compile(r"\s+")


def _key(raw: str) -> str:
    return _WHITESPACE.sub(" ", str(raw or "").strip().lower())


def _invert(table: Dict[str, Tuple[str, ...]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for canonical, aliases in table.items():
        out[_key(canonical)] = canonical
        for alias in aliases:
            out[_key(alias)] = canonical
    return out


_LANGUAGE_INDEX = _invert(LANGUAGE_ALIASES)
_TOPIC_INDEX = _invert(TOPIC_ALIASES)
_DIFFICULTY_INDEX = _invert(DIFFICULTY_ALIASES)


def normalize_language(raw: str) -> Optional[str]:
    return _LANGUAGE_INDEX.get(_key(raw))


def normalize_topic(raw: str) -> Optional[str]:
    return _TOPIC_INDEX.get(_key(raw))


def normalize_level(raw: str) -> Optional[str]:
    return _DIFFICULTY_INDEX.get(_key(raw))


def normalize_many(raws: Iterable[str], normalizer) -> Tuple[List[str], List[str]]:
    """
    Normalize a batch of names.

    Returns ``(canonical, unmatched)``; canonical keeps first-seen order and
    drops duplicates, unmatched keeps the raw inputs that had no entry.
    """
    canonical: List[str] = []
    unmatched: List[str] = []
    for raw in raws:
        name = normalizer(raw)
        if name is None:
            unmatched.append(raw)
        elif name not in canonical:
            canonical.append(name)
    return canonical, unmatched
