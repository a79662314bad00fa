from datetime import timedelta

from django.db import models
from django.db.models import Q
from django.utils.timezone import now

from Matching.models import LEVELS, Developer, Project
from SkillGate.errors import ChallengeLocked


class Challenge(models.Model):
    CONTENT_FIELDS = (
        "title", "description", "project_id", "language", "difficulty_level",
        "starter_code", "time_limit_minutes", "pass_threshold",
    )

    title = models.CharField(max_length=160)
    description = models.TextField()
    project = models.ForeignKey(
        Project, related_name="challenges", null=True, blank=True, on_delete=models.CASCADE
    )
    language = models.CharField(max_length=64)
    difficulty_level = models.CharField(max_length=32, choices=LEVELS, default="intermediate")
    starter_code = models.TextField(blank=True, default="")
    time_limit_minutes = models.PositiveIntegerField(null=True, blank=True)  # null = unlimited
    pass_threshold = models.PositiveIntegerField(null=True, blank=True)  # null = AlgorithmConfig default
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.title

    def is_referenced(self) -> bool:
        return self.pk is not None and self.attempts.exists()

    def save(self, *args, **kwargs):
        if self.pk is not None and self.is_referenced():
            stored = Challenge.objects.filter(pk=self.pk).values(*self.CONTENT_FIELDS).first()
            if stored and any(stored[f] != getattr(self, f) for f in self.CONTENT_FIELDS):
                raise ChallengeLocked(f"Challenge {self.pk} is referenced by an attempt and cannot change")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.is_referenced():
            raise ChallengeLocked(f"Challenge {self.pk} is referenced by an attempt and cannot be deleted")
        return super().delete(*args, **kwargs)


class ChallengeTestCase(models.Model):
    COMPARISONS = [("exact", "Exact"), ("tolerant", "Tolerant")]

    challenge = models.ForeignKey(Challenge, related_name="test_cases", on_delete=models.CASCADE)
    position = models.PositiveIntegerField(default=0)
    input = models.TextField(blank=True, default="")
    expected_output = models.TextField(blank=True, default="")
    weight = models.PositiveIntegerField(default=1)
    comparison = models.CharField(max_length=16, choices=COMPARISONS, default="exact")
    tolerance = models.FloatField(default=1e-6)

    class Meta:
        ordering = ("position", "id")

    def __str__(self):
        return f"{self.challenge} #{self.position}"

    def save(self, *args, **kwargs):
        if self.challenge.is_referenced():
            raise ChallengeLocked(f"Challenge {self.challenge_id} is referenced by an attempt and cannot change")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.challenge.is_referenced():
            raise ChallengeLocked(f"Challenge {self.challenge_id} is referenced by an attempt and cannot change")
        return super().delete(*args, **kwargs)


class ChallengeAttempt(models.Model):
    STATES = [
        ("issued", "Issued"),
        ("started", "Started"),
        ("submitted", "Submitted"),
        ("passed", "Passed"),
        ("failed", "Failed"),
        ("expired", "Expired"),
        ("abandoned", "Abandoned"),
    ]
    OPEN_STATES = ("issued", "started", "submitted")
    TERMINAL_STATES = ("passed", "failed", "expired", "abandoned")

    KINDS = [("persistent", "Persistent"), ("ephemeral", "Ephemeral")]

    developer = models.ForeignKey(Developer, related_name="attempts", on_delete=models.CASCADE)
    project = models.ForeignKey(Project, related_name="attempts", on_delete=models.CASCADE)
    challenge = models.ForeignKey(
        Challenge, related_name="attempts", null=True, blank=True, on_delete=models.PROTECT
    )
    challenge_kind = models.CharField(max_length=16, choices=KINDS, default="persistent")
    ephemeral_challenge = models.JSONField(null=True, blank=True)

    state = models.CharField(max_length=16, choices=STATES, default="issued")
    time_limit_minutes = models.PositiveIntegerField(null=True, blank=True)
    pass_threshold = models.PositiveIntegerField(default=70)

    issued_at = models.DateTimeField(default=now)
    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    submitted_code = models.TextField(blank=True, default="")
    draft_code = models.TextField(blank=True, default="")
    draft_saved_at = models.DateTimeField(null=True, blank=True)

    score = models.IntegerField(null=True, blank=True)
    passed_tests = models.IntegerField(null=True, blank=True)
    total_tests = models.IntegerField(null=True, blank=True)
    test_results = models.JSONField(default=list, blank=True)
    evaluation_fault = models.BooleanField(default=False)
    feedback = models.TextField(blank=True, default="")

    next_attempt_at = models.DateTimeField(null=True, blank=True)
    membership_granted = models.BooleanField(default=False)
    admission_note = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        ordering = ("-issued_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=["developer", "project"],
                condition=Q(state__in=("issued", "started", "submitted")),
                name="one_open_attempt_per_developer_project",
            ),
        ]
        indexes = [
            models.Index(fields=["developer", "project", "state"]),
            models.Index(fields=["state", "started_at"]),
        ]

    def __str__(self):
        return f"Attempt {self.pk} by {self.developer} on {self.project} ({self.state})"

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES

    @property
    def deadline_at(self):
        if self.started_at is None or self.time_limit_minutes is None:
            return None
        return self.started_at + timedelta(minutes=self.time_limit_minutes)

    def has_lapsed(self, at) -> bool:
        deadline = self.deadline_at
        return self.state == "started" and deadline is not None and at > deadline


class AttemptLock(models.Model):
    """
    One row per (developer, project). Whoever holds an unexpired lease on
    the row owns admission work for that pair across processes.
    """

    developer = models.ForeignKey(Developer, related_name="+", on_delete=models.CASCADE)
    project = models.ForeignKey(Project, related_name="+", on_delete=models.CASCADE)
    holder = models.CharField(max_length=32, blank=True, default="")
    held_until = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("developer", "project")
