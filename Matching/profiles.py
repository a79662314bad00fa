from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from django.db import transaction

from Matching.models import Developer, LanguageSkill, Project, TopicInterest
from Matching.normalize import normalize_language, normalize_level, normalize_topic
from SkillGate.errors import ValidationError


@dataclass(frozen=True)
class SkillProfile:
    developer_id: int
    experience_level: str
    # ordered (language, proficiency)
    languages: Tuple[Tuple[str, str], ...] = ()
    # (topic, interest level)
    topics: Tuple[Tuple[str, str], ...] = ()

    def language_map(self) -> Dict[str, str]:
        return {name.strip().lower(): level for name, level in self.languages}

    def topic_map(self) -> Dict[str, str]:
        return {name.strip().lower(): level for name, level in self.topics}


@dataclass(frozen=True)
class RequiredLanguage:
    name: str
    required_level: str = "beginner"
    is_primary: bool = False


@dataclass(frozen=True)
class RequiredTopic:
    name: str
    is_primary: bool = False


@dataclass(frozen=True)
class ProjectProfile:
    project_id: int
    owner_id: int
    difficulty_level: str
    maximum_members: int
    current_members: int
    created_at: Optional[datetime] = None
    languages: Tuple[RequiredLanguage, ...] = ()
    topics: Tuple[RequiredTopic, ...] = ()
    title: str = ""

    def __post_init__(self):
        if sum(1 for lang in self.languages if lang.is_primary) > 1:
            raise ValueError("A project may mark at most one primary language")
        if sum(1 for topic in self.topics if topic.is_primary) > 1:
            raise ValueError("A project may mark at most one primary topic")

    @property
    def primary_language(self) -> Optional[RequiredLanguage]:
        for lang in self.languages:
            if lang.is_primary:
                return lang
        return self.languages[0] if self.languages else None


def load_skill_profile(developer: Developer) -> SkillProfile:
    return SkillProfile(
        developer_id=developer.id,
        experience_level=normalize_level(developer.experience_level) or "intermediate",
        languages=tuple((s.name, s.proficiency_level) for s in developer.languages.all()),
        topics=tuple((t.name, t.interest_level) for t in developer.topics.all()),
    )


def project_profile(project: Project) -> ProjectProfile:
    return ProjectProfile(
        project_id=project.id,
        owner_id=project.owner_id,
        difficulty_level=normalize_level(project.difficulty_level) or "intermediate",
        maximum_members=project.maximum_members,
        current_members=project.current_members,
        created_at=project.created_at,
        title=project.title,
        languages=tuple(
            RequiredLanguage(pl.name, pl.required_level, pl.is_primary) for pl in project.languages.all()
        ),
        topics=tuple(RequiredTopic(pt.name, pt.is_primary) for pt in project.topics.all()),
    )


def load_project_profiles(projects: Iterable[Project]) -> List[ProjectProfile]:
    return [project_profile(p) for p in projects]


def replace_skill_profile(developer: Developer, languages: List[Dict], topics: List[Dict]) -> SkillProfile:
    """
    Replace the developer's languages and topics with canonical entries.

    Every name and level must resolve through the normalization tables;
    unknown ones are reported back instead of being stored as new entries.
    """
    unmatched = {"languages": [], "topics": [], "levels": []}
    clean_languages: List[Tuple[str, str]] = []
    for item in languages:
        name = normalize_language(item.get("name", ""))
        level = normalize_level(item.get("proficiency_level") or "beginner")
        if name is None:
            unmatched["languages"].append(item.get("name"))
        if level is None:
            unmatched["levels"].append(item.get("proficiency_level"))
        if name and level and name not in {n for n, _ in clean_languages}:
            clean_languages.append((name, level))

    clean_topics: List[Tuple[str, str]] = []
    for item in topics:
        name = normalize_topic(item.get("name", ""))
        if name is None:
            unmatched["topics"].append(item.get("name"))
        elif name not in {n for n, _ in clean_topics}:
            clean_topics.append((name, item.get("interest_level") or "medium"))

    if any(unmatched.values()):
        raise ValidationError("Some skills could not be matched", unmatched={k: v for k, v in unmatched.items() if v})

    with transaction.atomic():
        developer.languages.all().delete()
        developer.topics.all().delete()
        LanguageSkill.objects.bulk_create(
            LanguageSkill(developer=developer, name=name, proficiency_level=level, position=i)
            for i, (name, level) in enumerate(clean_languages)
        )
        TopicInterest.objects.bulk_create(
            TopicInterest(developer=developer, name=name, interest_level=interest)
            for name, interest in clean_topics
        )
    return load_skill_profile(developer)
