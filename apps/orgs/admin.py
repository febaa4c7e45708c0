"""
Django admin configuration for orgs app.
"""
from django.contrib import admin
from .models import Org, Project


@admin.register(Org)
class OrgAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'status', 'created_at']
    list_filter = ['status']
    search_fields = ['name', 'slug']


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ['name', 'org', 'status', 'created_at']
    list_filter = ['status']
    search_fields = ['name', 'org__name']
