from rest_framework import routers
from django.urls import path, include
from .views import ChallengeAttemptViewSet, ChallengeViewSet, ProjectAdmissionViewSet

router = routers.DefaultRouter()
router.register(r'projects', ProjectAdmissionViewSet, basename='admission-projects')
router.register(r'attempts', ChallengeAttemptViewSet, basename='attempts')
router.register(r'challenges', ChallengeViewSet, basename='challenges')

urlpatterns = [
    path('', include(router.urls)),
]
