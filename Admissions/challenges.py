"""
Challenge variants and selection.

A ``ChallengeSpec`` is what the evaluation engine sees. It is built either
from a stored ``Challenge`` row (persistent) or from the snapshot kept on an
attempt whose challenge was synthesized for it alone (ephemeral), so both
kinds share one evaluation path.
"""
import hashlib
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from Admissions.models import Challenge, ChallengeAttempt
from Matching.models import Project
from SkillGate.errors import ValidationError

PERSISTENT = "persistent"
EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class CaseSpec:
    input: str
    expected_output: str
    weight: int = 1
    comparison: str = "exact"
    tolerance: float = 1e-6


@dataclass(frozen=True)
class ChallengeSpec:
    kind: str
    title: str
    description: str
    language: str
    starter_code: str
    time_limit_minutes: Optional[int]
    pass_threshold: Optional[int]
    test_cases: Tuple[CaseSpec, ...] = field(default_factory=tuple)
    challenge_id: Optional[int] = None
    difficulty_level: str = "intermediate"

    @property
    def total_weight(self) -> int:
        return sum(t.weight for t in self.test_cases)

    @classmethod
    def from_model(cls, challenge: Challenge) -> "ChallengeSpec":
        return cls(
            kind=PERSISTENT,
            challenge_id=challenge.id,
            title=challenge.title,
            description=challenge.description,
            language=challenge.language,
            difficulty_level=challenge.difficulty_level,
            starter_code=challenge.starter_code,
            time_limit_minutes=challenge.time_limit_minutes,
            pass_threshold=challenge.pass_threshold,
            test_cases=tuple(
                CaseSpec(t.input, t.expected_output, t.weight, t.comparison, t.tolerance)
                for t in challenge.test_cases.all()
            ),
        )

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "ChallengeSpec":
        data = dict(data)
        data["test_cases"] = tuple(CaseSpec(**t) for t in data.get("test_cases", []))
        return cls(**data)

    def snapshot(self) -> Dict[str, Any]:
        out = asdict(self)
        out["test_cases"] = [asdict(t) for t in self.test_cases]
        return out

    def public_view(self) -> Dict[str, Any]:
        """Everything a candidate may see: no expected outputs."""
        return {
            "challenge_id": self.challenge_id,
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "language": self.language,
            "difficulty_level": self.difficulty_level,
            "starter_code": self.starter_code,
            "time_limit_minutes": self.time_limit_minutes,
            "pass_threshold": self.pass_threshold,
            "test_count": len(self.test_cases),
        }


def spec_for_attempt(attempt: ChallengeAttempt) -> ChallengeSpec:
    if attempt.challenge_kind == EPHEMERAL:
        return ChallengeSpec.from_snapshot(attempt.ephemeral_challenge or {})
    challenge = Challenge.objects.prefetch_related("test_cases").get(pk=attempt.challenge_id)
    return ChallengeSpec.from_model(challenge)


# ── Ephemeral templates ────────────────────────────────────────────────

STARTER_CODE = {
    "Python": "# Read from standard input, write the answer to standard output\nimport sys\n\ndef solution(data):\n    pass\n\nif __name__ == \"__main__\":\n    print(solution(sys.stdin.read()))\n",
    "JavaScript": "// Read from standard input, write the answer to standard output\nconst data = require('fs').readFileSync(0, 'utf8');\n\nfunction solution(data) {\n    return null;\n}\n\nconsole.log(solution(data));\n",
    "TypeScript": "// Read from standard input, write the answer to standard output\nimport * as fs from 'fs';\n\nfunction solution(data: string): string {\n    return '';\n}\n\nconsole.log(solution(fs.readFileSync(0, 'utf8')));\n",
    "Java": "import java.util.*;\n\npublic class Main {\n    public static void main(String[] args) {\n        Scanner in = new Scanner(System.in);\n        // read input and print the answer\n    }\n}\n",
    "C++": "#include <iostream>\nusing namespace std;\n\nint main() {\n    // read input and print the answer\n    return 0;\n}\n",
    "C#": "using System;\n\nclass Program {\n    static void Main() {\n        // read input and print the answer\n    }\n}\n",
    "Go": "package main\n\nimport \"fmt\"\n\nfunc main() {\n    // read input and print the answer\n    fmt.Println()\n}\n",
    "Rust": "use std::io::Read;\n\nfn main() {\n    let mut input = String::new();\n    std::io::stdin().read_to_string(&mut input).unwrap();\n    // print the answer\n}\n",
}

EPHEMERAL_TEMPLATES: List[Dict[str, Any]] = [
    {
        "key": "sum",
        "title": "Sum of Integers",
        "description": (
            "Read a single line of space-separated integers from standard input "
            "and print their sum. An empty line sums to 0."
        ),
        "tests": [("1 2 3", "6"), ("10", "10"), ("-5 5", "0"), ("", "0"), ("100 200 300 400", "1000")],
    },
    {
        "key": "reverse_words",
        "title": "Reverse Words",
        "description": (
            "Read one line of text and print its words in reverse order, "
            "separated by single spaces."
        ),
        "tests": [
            ("hello world", "world hello"),
            ("one", "one"),
            ("a b c d", "d c b a"),
            ("  spaced   out  ", "out spaced"),
            ("keep the order reversed", "reversed order the keep"),
        ],
    },
    {
        "key": "count_vowels",
        "title": "Count Vowels",
        "description": "Read one line of text and print how many vowels (a, e, i, o, u; any case) it contains.",
        "tests": [("hello", "2"), ("AEIOU", "5"), ("rhythm", "0"), ("", "0"), ("Programming Challenge", "6")],
    },
    {
        "key": "max_value",
        "title": "Largest Number",
        "description": "Read a line of space-separated integers (at least one) and print the largest.",
        "tests": [("3 9 2", "9"), ("-1 -7 -3", "-1"), ("42", "42"), ("5 5 5", "5"), ("0 -1 1000 999", "1000")],
    },
]


def starter_code_for(language: str) -> str:
    return STARTER_CODE.get(language, f"// Your {language} solution here\n")


def _seeded_rng(*parts) -> random.Random:
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


def synthesize_ephemeral(project: Project, language: str, rng: random.Random, time_limit_minutes: int = 60) -> ChallengeSpec:
    template = EPHEMERAL_TEMPLATES[rng.randrange(len(EPHEMERAL_TEMPLATES))]
    description = (
        f'Welcome to "{project.title}"!\n\n'
        f"This project uses {language}. Complete this challenge to demonstrate your skills.\n\n"
        f"Task: {template['description']}"
    )
    return ChallengeSpec(
        kind=EPHEMERAL,
        title=f"{language} Coding Challenge: {template['title']}",
        description=description,
        language=language,
        difficulty_level=project.difficulty_level,
        starter_code=starter_code_for(language),
        time_limit_minutes=time_limit_minutes,
        pass_threshold=None,
        test_cases=tuple(CaseSpec(stdin, expected) for stdin, expected in template["tests"]),
    )


def select_challenge(project: Project, developer_id: int, attempt_number: int) -> Tuple[Optional[Challenge], ChallengeSpec]:
    """
    Pick a challenge for the pair.

    Active project-bound challenges in the project's languages come first,
    then general ones; within a pool the primary language is preferred. The
    choice is deterministic per (developer, project, attempt number). When no
    stored challenge with test cases qualifies, an ephemeral one is
    synthesized.
    """
    languages = list(project.languages.all())
    if not languages:
        raise ValidationError("This project has no programming languages configured", project_id=project.id)

    names = [pl.name for pl in languages]
    primary = next((pl.name for pl in languages if pl.is_primary), languages[0].name)
    rng = _seeded_rng(developer_id, project.id, attempt_number)

    base = (
        Challenge.objects.filter(is_active=True, language__in=names, test_cases__isnull=False)
        .distinct()
        .prefetch_related("test_cases")
        .order_by("id")
    )
    for pool in (base.filter(project=project), base.filter(project__isnull=True)):
        candidates = list(pool)
        if not candidates:
            continue
        preferred = [c for c in candidates if c.language == primary] or candidates
        chosen = preferred[rng.randrange(len(preferred))]
        return chosen, ChallengeSpec.from_model(chosen)

    return None, synthesize_ephemeral(project, primary, rng)
