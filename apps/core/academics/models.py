from django.db import models


class ClassLevel(models.Model):
    name = models.CharField(max_length=50, unique=True)  # e.g. Class 10
    # Numeric sort key so "Class 10" follows "Class 2".
    display_order = models.PositiveIntegerField(unique=True)
    description = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'id']

    def __str__(self):
        return self.name
