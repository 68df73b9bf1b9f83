"""Django app configuration for django_dosing."""
from django.apps import AppConfig


class DjangoDosingConfig(AppConfig):
    name = "django_dosing"
    label = "django_dosing"
    verbose_name = "Dosing"
