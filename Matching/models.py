from django.db import models, transaction
from django.db.models import Q
from django.utils.timezone import now

LEVELS = [
    ("beginner", "Beginner"),
    ("intermediate", "Intermediate"),
    ("advanced", "Advanced"),
    ("expert", "Expert"),
]

LEVEL_RANK = {"beginner": 1, "intermediate": 2, "advanced": 3, "expert": 4}

INTEREST_LEVELS = [("low", "Low"), ("medium", "Medium"), ("high", "High")]


class Developer(models.Model):
    full_name = models.CharField(max_length=120)
    email = models.EmailField(unique=True)
    experience_level = models.CharField(max_length=32, choices=LEVELS, default="beginner")
    years_experience = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.full_name


class LanguageSkill(models.Model):
    developer = models.ForeignKey(Developer, related_name="languages", on_delete=models.CASCADE)
    name = models.CharField(max_length=64)
    proficiency_level = models.CharField(max_length=32, choices=LEVELS, default="beginner")
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("position", "id")
        unique_together = ("developer", "name")

    def __str__(self) -> str:
        return f"{self.name} ({self.proficiency_level})"


class TopicInterest(models.Model):
    developer = models.ForeignKey(Developer, related_name="topics", on_delete=models.CASCADE)
    name = models.CharField(max_length=64)
    interest_level = models.CharField(max_length=16, choices=INTEREST_LEVELS, default="medium")

    class Meta:
        unique_together = ("developer", "name")

    def __str__(self) -> str:
        return f"{self.name} ({self.interest_level})"


class Project(models.Model):
    STATUS = [
        ("recruiting", "Recruiting"),
        ("in_progress", "In progress"),
        ("completed", "Completed"),
        ("closed", "Closed"),
    ]

    title = models.CharField(max_length=160)
    description = models.TextField(blank=True)
    owner = models.ForeignKey(Developer, related_name="owned_projects", on_delete=models.CASCADE)
    status = models.CharField(max_length=32, choices=STATUS, default="recruiting")
    difficulty_level = models.CharField(max_length=32, choices=LEVELS, default="intermediate")
    maximum_members = models.PositiveIntegerField(default=5)
    current_members = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=now)

    def __str__(self) -> str:
        return f"{self.title} ({self.status})"

    @property
    def is_recruiting(self) -> bool:
        return self.status == "recruiting" and self.current_members < self.maximum_members


class ProjectLanguage(models.Model):
    project = models.ForeignKey(Project, related_name="languages", on_delete=models.CASCADE)
    name = models.CharField(max_length=64)
    required_level = models.CharField(max_length=32, choices=LEVELS, default="beginner")
    is_primary = models.BooleanField(default=False)

    class Meta:
        unique_together = ("project", "name")
        constraints = [
            models.UniqueConstraint(
                fields=["project"],
                condition=Q(is_primary=True),
                name="one_primary_language_per_project",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ≥ {self.required_level}"


class ProjectTopic(models.Model):
    project = models.ForeignKey(Project, related_name="topics", on_delete=models.CASCADE)
    name = models.CharField(max_length=64)
    is_primary = models.BooleanField(default=False)

    class Meta:
        unique_together = ("project", "name")
        constraints = [
            models.UniqueConstraint(
                fields=["project"],
                condition=Q(is_primary=True),
                name="one_primary_topic_per_project",
            ),
        ]

    def __str__(self) -> str:
        return self.name


class ProjectMembership(models.Model):
    ROLES = [("owner", "Owner"), ("member", "Member")]
    STATUS = [("active", "Active"), ("inactive", "Inactive")]

    project = models.ForeignKey(Project, related_name="memberships", on_delete=models.CASCADE)
    developer = models.ForeignKey(Developer, related_name="memberships", on_delete=models.CASCADE)
    role = models.CharField(max_length=16, choices=ROLES, default="member")
    status = models.CharField(max_length=16, choices=STATUS, default="active")
    joined_at = models.DateTimeField(default=now)

    class Meta:
        unique_together = ("project", "developer")

    def __str__(self) -> str:
        return f"{self.developer} in {self.project} ({self.role})"


class AlgorithmConfigQuerySet(models.QuerySet):
    def current(self) -> "AlgorithmConfig":
        """
        Return the active config version, creating the default version 1 when
        the table is empty.
        """
        config = self.filter(is_active=True).order_by("-version").first()
        if config is None:
            config, _ = self.get_or_create(version=1, defaults={"is_active": True, "notes": "default"})
        return config


class AlgorithmConfig(models.Model):
    """
    Versioned weight vector for the matching scorer plus admission thresholds.
    Rows are never edited in place: every change is a new version.
    """

    version = models.PositiveIntegerField(unique=True)
    is_active = models.BooleanField(default=True)

    language_weight = models.FloatField(default=0.3)
    topic_weight = models.FloatField(default=0.4)
    difficulty_weight = models.FloatField(default=0.3)
    difficulty_penalty = models.FloatField(default=0.35)
    primary_boost = models.FloatField(default=1.5)
    min_score = models.FloatField(default=0.0)
    recommendation_limit = models.PositiveIntegerField(default=10)

    pass_threshold = models.PositiveIntegerField(default=70)
    cooldown_minutes = models.PositiveIntegerField(default=60)

    high_confidence_score = models.FloatField(default=75.0)
    learning_rate = models.FloatField(default=0.5)
    min_feedback_samples = models.PositiveIntegerField(default=20)

    approved_by = models.CharField(max_length=150, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AlgorithmConfigQuerySet.as_manager()

    TUNABLE_FIELDS = (
        "language_weight", "topic_weight", "difficulty_weight", "difficulty_penalty",
        "primary_boost", "min_score", "recommendation_limit", "pass_threshold",
        "cooldown_minutes", "high_confidence_score", "learning_rate", "min_feedback_samples",
    )

    class Meta:
        ordering = ("-version",)

    def __str__(self) -> str:
        return f"AlgorithmConfig v{self.version}{' (active)' if self.is_active else ''}"

    @property
    def weights(self) -> dict:
        return {
            "language": self.language_weight,
            "topic": self.topic_weight,
            "difficulty": self.difficulty_weight,
        }

    def new_version(self, approved_by: str = "", notes: str = "", **changes) -> "AlgorithmConfig":
        """
        Create and activate a new version derived from this one.
        """
        unknown = set(changes) - set(self.TUNABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")

        with transaction.atomic():
            latest = AlgorithmConfig.objects.select_for_update().order_by("-version").first()
            values = {f: getattr(self, f) for f in self.TUNABLE_FIELDS}
            values.update(changes)
            AlgorithmConfig.objects.filter(is_active=True).update(is_active=False)
            return AlgorithmConfig.objects.create(
                version=(latest.version if latest else 0) + 1,
                is_active=True,
                approved_by=approved_by,
                notes=notes,
                **values,
            )


class Recommendation(models.Model):
    ACTIONS = [
        ("viewed", "Viewed"),
        ("applied", "Applied"),
        ("joined", "Joined"),
        ("ignored", "Ignored"),
    ]

    developer = models.ForeignKey(Developer, related_name="recommendations", on_delete=models.CASCADE)
    project = models.ForeignKey(Project, related_name="recommendations", on_delete=models.CASCADE)
    recommendation_score = models.FloatField(default=0.0)  # 0–100
    language_score = models.FloatField(default=0.0)  # 0–1
    topic_score = models.FloatField(default=0.0)
    difficulty_score = models.FloatField(default=0.0)
    match_factors = models.JSONField(default=dict, blank=True)
    algorithm_version = models.PositiveIntegerField(default=1)
    action_taken = models.CharField(max_length=16, choices=ACTIONS, null=True, blank=True)
    feedback_score = models.PositiveSmallIntegerField(null=True, blank=True)
    superseded = models.BooleanField(default=False)
    recommended_at = models.DateTimeField(default=now)
    refreshed_at = models.DateTimeField(default=now)
    acted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("-recommended_at", "-id")
        indexes = [
            models.Index(fields=["developer", "project", "superseded"]),
            models.Index(fields=["recommended_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.project} for {self.developer}: {self.recommendation_score}"


class FeedbackEvent(models.Model):
    """
    Append-only log of observed actions. Recommendation rows hold the latest
    action; this table keeps every one, including actions on projects that
    were never recommended (search, manual join, admission).
    """

    SOURCES = [
        ("recommendation", "Recommendation"),
        ("search", "Search"),
        ("manual", "Manual"),
        ("admission", "Admission"),
    ]

    developer = models.ForeignKey(Developer, related_name="feedback_events", on_delete=models.CASCADE)
    project = models.ForeignKey(Project, related_name="feedback_events", on_delete=models.CASCADE)
    recommendation = models.ForeignKey(
        Recommendation, related_name="events", null=True, blank=True, on_delete=models.SET_NULL
    )
    action_taken = models.CharField(max_length=16, choices=Recommendation.ACTIONS)
    feedback_score = models.PositiveSmallIntegerField(null=True, blank=True)
    source = models.CharField(max_length=16, choices=SOURCES, default="recommendation")
    created_at = models.DateTimeField(default=now)

    class Meta:
        ordering = ("-created_at", "-id")

    def __str__(self) -> str:
        return f"{self.developer} {self.action_taken} {self.project} via {self.source}"
