"""
Tests for AppBase principal administration and settings.

Tests:
- create_principal() validation and per-role username namespaces
- update_principal() and self-service changes
- Contributor surface prefix setting
- Tag registry administration
"""

import pytest

from appbase.errors import AuthzError, NotFoundError, ValidationError
from appbase.services.identity_service import IdentityService
from appbase.services.principal_service import PrincipalService
from appbase.services.tag_service import TagService
from appbase.tests.conftest import ADMIN_PREFIX, TEST_PASSWORD, create_test_principal


class TestCreatePrincipal:
    """Tests for PrincipalService.create_principal()."""

    def test_create_contributor_with_scope(self, app):
        principal = create_test_principal('contributor', 'editor', scopes=['can-approve'])
        assert principal.role == 'contributor'
        assert principal.scopes == ['can-approve']
        assert principal.check_password(TEST_PASSWORD)
        assert 'password_hash' not in principal.to_dict()

    def test_same_username_in_both_roles(self, app):
        create_test_principal('admin', 'alex')
        create_test_principal('contributor', 'alex')
        assert len(PrincipalService.list_principals()) == 2

    def test_duplicate_username_in_role(self, app):
        create_test_principal('contributor', 'alex')
        with pytest.raises(ValidationError) as exc_info:
            create_test_principal('contributor', 'alex')
        assert exc_info.value.field == 'username'

    def test_short_password(self, app):
        with pytest.raises(ValidationError) as exc_info:
            create_test_principal(password='short')
        assert exc_info.value.field == 'password'

    def test_invalid_role(self, app):
        with pytest.raises(ValidationError):
            create_test_principal(role='superuser')

    def test_admin_cannot_hold_scopes(self, app):
        with pytest.raises(ValidationError):
            create_test_principal('admin', 'boss', scopes=['can-approve'])

    def test_unknown_scope(self, app):
        with pytest.raises(ValidationError):
            create_test_principal(scopes=['can-everything'])


class TestUpdatePrincipal:
    """Tests for update_principal() and self-service changes."""

    def test_update_scopes(self, app, admin, contributor):
        result = PrincipalService.update_principal(admin, contributor.id, scopes=['can-approve'])
        assert result['principal'].scopes == ['can-approve']
        assert result['revoked_sessions'] == 0

    def test_cannot_deactivate_self(self, app, admin):
        with pytest.raises(ValidationError):
            PrincipalService.update_principal(admin, admin.id, is_active=False)

    def test_missing_principal(self, app, admin):
        with pytest.raises(NotFoundError):
            PrincipalService.update_principal(admin, 'missing', username='x')

    def test_change_password_checks_current(self, app, contributor):
        with pytest.raises(ValidationError) as exc_info:
            PrincipalService.change_password(contributor.id, 'wrong-password', 'another-password')
        assert exc_info.value.field == 'current_password'

    def test_change_password_has_no_session_exemption(self, app, contributor):
        IdentityService.issue_session(contributor)
        with pytest.raises(TypeError):
            PrincipalService.change_password(contributor.id, TEST_PASSWORD, 'another-password',
                                             keep_session_id='current')
        assert PrincipalService.change_password(contributor.id, TEST_PASSWORD, 'another-password') == 1

    def test_change_username(self, app, contributor, other_contributor):
        assert PrincipalService.change_username(contributor.id, 'renamed').username == 'renamed'
        with pytest.raises(ValidationError):
            PrincipalService.change_username(contributor.id, other_contributor.username)

    def test_list_by_role(self, app, admin, contributor):
        assert [p.username for p in PrincipalService.list_principals(role='admin')] == [admin.username]


class TestContributorPrefix:
    """Tests for the contributor surface prefix setting."""

    def test_default_prefix(self, app):
        assert PrincipalService.get_contributor_prefix() == app.config['DEFAULT_CONTRIBUTOR_URL_PREFIX']

    def test_set_prefix(self, app, admin):
        PrincipalService.set_contributor_prefix(admin, 'writers-door-42')
        assert PrincipalService.get_contributor_prefix() == 'writers-door-42'

    @pytest.mark.parametrize('prefix', ['short', 'has space in it', 'slash/es/here', ADMIN_PREFIX])
    def test_invalid_prefix(self, app, admin, prefix):
        with pytest.raises(ValidationError):
            PrincipalService.set_contributor_prefix(admin, prefix)


class TestTagRegistry:
    """Tests for TagService."""

    def test_add_expands_hierarchy(self, app, admin):
        added = TagService.add_tag(admin, 'a/b')
        assert added == ['a', 'b', 'a/b']
        assert TagService.add_tag(admin, 'a') == []

    def test_delete_tag(self, app, admin):
        TagService.add_tag(admin, 'temp')
        TagService.delete_tag(admin, 'temp')
        assert [tag.tag for tag in TagService.list_tags()] == []
        with pytest.raises(NotFoundError):
            TagService.delete_tag(admin, 'temp')

    def test_contributor_cannot_manage_tags(self, app, contributor):
        with pytest.raises(AuthzError):
            TagService.add_tag(contributor, 'mine')
