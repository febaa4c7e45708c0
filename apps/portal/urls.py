"""
Portal API URLs, mounted under /v1/.
"""
from django.urls import path
from apps.portal.views import (
    PortalAccountStatusView,
    PortalActionView,
    PortalClaimView,
    PortalGrantStatusView,
    PortalLoginView,
    PortalPinView,
    PortalSessionView,
    PortalTokenPinView,
    PortalTokenRevokeView,
    PortalView,
    ProjectPortalAccountListView,
    ProjectPortalTokenListView,
    SignedLinkView,
)

app_name = 'portal'

urlpatterns = [
    # External access
    path('links/<str:token>', SignedLinkView.as_view(), name='signed-link'),
    path('portal-session', PortalSessionView.as_view(), name='portal-session'),
    path('portal/<str:token>', PortalView.as_view(), name='portal'),
    path('portal/<str:token>/pin', PortalPinView.as_view(), name='portal-pin'),
    path('portal/<str:token>/authorize', PortalActionView.as_view(), name='portal-authorize'),
    path('portal/<str:token>/claim', PortalClaimView.as_view(), name='portal-claim'),
    path('portal/<str:token>/login', PortalLoginView.as_view(), name='portal-login'),

    # Internal management
    path('projects/<uuid:project_id>/portal-tokens', ProjectPortalTokenListView.as_view(), name='portal-token-list'),
    path('projects/<uuid:project_id>/portal-accounts', ProjectPortalAccountListView.as_view(),
         name='portal-account-list'),
    path('projects/<uuid:project_id>/portal-accounts/<uuid:account_id>/status', PortalAccountStatusView.as_view(),
         name='portal-account-status'),
    path('portal-tokens/<uuid:token_id>/revoke', PortalTokenRevokeView.as_view(), name='portal-token-revoke'),
    path('portal-tokens/<uuid:token_id>/pin', PortalTokenPinView.as_view(), name='portal-token-pin'),
    path('portal-grants/<uuid:grant_id>/status', PortalGrantStatusView.as_view(), name='portal-grant-status'),
]
