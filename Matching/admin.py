from django.contrib import admin

from Matching.models import (
    AlgorithmConfig,
    Developer,
    FeedbackEvent,
    LanguageSkill,
    Project,
    ProjectLanguage,
    ProjectMembership,
    ProjectTopic,
    Recommendation,
    TopicInterest,
)


class LanguageSkillInline(admin.TabularInline):
    model = LanguageSkill
    extra = 0


class TopicInterestInline(admin.TabularInline):
    model = TopicInterest
    extra = 0


@admin.register(Developer)
class DeveloperAdmin(admin.ModelAdmin):
    list_display = ("id", "full_name", "email", "experience_level")
    search_fields = ("full_name", "email")
    inlines = (LanguageSkillInline, TopicInterestInline)


class ProjectLanguageInline(admin.TabularInline):
    model = ProjectLanguage
    extra = 0


class ProjectTopicInline(admin.TabularInline):
    model = ProjectTopic
    extra = 0


class ProjectMembershipInline(admin.TabularInline):
    model = ProjectMembership
    extra = 0


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "owner", "status", "difficulty_level", "current_members", "maximum_members")
    list_filter = ("status", "difficulty_level")
    search_fields = ("title",)
    inlines = (ProjectLanguageInline, ProjectTopicInline, ProjectMembershipInline)


@admin.register(AlgorithmConfig)
class AlgorithmConfigAdmin(admin.ModelAdmin):
    """Saving never edits a version in place; it activates a new one."""

    list_display = ("version", "is_active", "language_weight", "topic_weight", "difficulty_weight",
                    "pass_threshold", "cooldown_minutes", "approved_by", "created_at")
    readonly_fields = ("version", "is_active", "approved_by", "created_at")

    def save_model(self, request, obj, form, change):
        changes = {f: form.cleaned_data[f] for f in AlgorithmConfig.TUNABLE_FIELDS if f in form.cleaned_data}
        base = AlgorithmConfig.objects.current()
        new = base.new_version(approved_by=request.user.get_username(), notes=form.cleaned_data.get("notes", ""), **changes)
        obj.pk = new.pk
        obj.version = new.version

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Recommendation)
class RecommendationAdmin(admin.ModelAdmin):
    list_display = ("id", "developer", "project", "recommendation_score", "action_taken", "superseded", "recommended_at")
    list_filter = ("action_taken", "superseded", "algorithm_version")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(FeedbackEvent)
class FeedbackEventAdmin(admin.ModelAdmin):
    list_display = ("id", "developer", "project", "action_taken", "source", "created_at")
    list_filter = ("source", "action_taken")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
