"""URL patterns for django-dosing."""
from django.urls import path

from . import views

app_name = 'django_dosing'

urlpatterns = [
    # Reads
    path('households/<uuid:household_id>/due/', views.due_list, name='due_list'),
    path(
        'households/<uuid:household_id>/inventory/sources/',
        views.inventory_sources,
        name='inventory_sources',
    ),

    # Writes
    path('households/<uuid:household_id>/administrations/', views.record, name='record'),
    path(
        'households/<uuid:household_id>/administrations/<uuid:administration_id>/cosign/',
        views.co_sign,
        name='co_sign',
    ),
    path('households/<uuid:household_id>/regimens/<uuid:regimen_id>/pause/', views.pause, name='regimen_pause'),
    path('households/<uuid:household_id>/regimens/<uuid:regimen_id>/resume/', views.resume, name='regimen_resume'),
]
