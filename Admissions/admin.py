from django.contrib import admin, messages

from Admissions.models import Challenge, ChallengeAttempt, ChallengeTestCase
from SkillGate.errors import ChallengeLocked


class ChallengeTestCaseInline(admin.TabularInline):
    model = ChallengeTestCase
    extra = 0


@admin.register(Challenge)
class ChallengeAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "project", "language", "difficulty_level", "is_active")
    list_filter = ("is_active", "language", "difficulty_level")
    search_fields = ("title",)
    inlines = (ChallengeTestCaseInline,)

    def save_model(self, request, obj, form, change):
        try:
            super().save_model(request, obj, form, change)
        except ChallengeLocked as e:
            self.message_user(request, e.message, level=messages.ERROR)

    def save_formset(self, request, form, formset, change):
        try:
            super().save_formset(request, form, formset, change)
        except ChallengeLocked as e:
            self.message_user(request, e.message, level=messages.ERROR)


@admin.register(ChallengeAttempt)
class ChallengeAttemptAdmin(admin.ModelAdmin):
    list_display = ("id", "developer", "project", "state", "score", "issued_at", "finalized_at", "next_attempt_at")
    list_filter = ("state", "challenge_kind")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
