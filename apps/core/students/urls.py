from django.urls import path

from .views import admit

urlpatterns = [
    path('admit/', admit, name='student_admit'),
]
