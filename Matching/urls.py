from rest_framework import routers
from django.urls import path, include
from .views import AlgorithmConfigViewSet, AnalyticsViewSet, DeveloperViewSet, FeedbackView

router = routers.DefaultRouter()
router.register(r'developers', DeveloperViewSet, basename='developers')
router.register(r'analytics', AnalyticsViewSet, basename='analytics')
router.register(r'algorithm-configs', AlgorithmConfigViewSet, basename='algorithm-configs')

urlpatterns = [
    path('feedback/', FeedbackView.as_view(), name='feedback'),
    path('', include(router.urls)),
]
