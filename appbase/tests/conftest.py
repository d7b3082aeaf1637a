"""
Pytest configuration and fixtures for AppBase tests.

This module provides shared fixtures for testing:
- Flask application with test configuration
- In-memory SQLite database
- Test client
- Principal factories (Admin, Contributor, Contributor with can-approve)
- Login helpers for the management surfaces
"""

import pytest

from appbase.app import create_app
from appbase.models import db
from appbase.services.lifecycle_service import LifecycleService
from appbase.services.principal_service import PrincipalService


ADMIN_PREFIX = 'test-admin-prefix'
CONTRIBUTOR_PREFIX = 'test-contributor-prefix'
TEST_PASSWORD = 'correct-horse-battery'


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create a Flask application configured for testing.

    This fixture provides an isolated Flask app with:
    - In-memory SQLite database
    - Testing mode enabled
    - Media stored in a temporary directory

    Yields:
        Flask application instance
    """
    application = create_app(config_name='testing')
    application.config['MEDIA_PATH'] = tmp_path / 'media'

    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


def create_test_principal(role='contributor', username='writer', password=TEST_PASSWORD, scopes=None):
    """
    Helper function to create a principal through the service layer.

    Args:
        role: 'admin' or 'contributor'
        username: Login name
        password: Plain text password
        scopes: Contributor scopes

    Returns:
        Principal instance
    """
    return PrincipalService.create_principal(role, username, password, scopes=scopes)


def create_test_item(principal, title='Hello World', **fields):
    """Create a draft owned by principal and return it."""
    data = {'title': title}
    data.update(fields)
    result = LifecycleService.create_draft(principal, data)
    assert result['success'], result['error']
    return result['item']


def publish_item(owner, approver, title='Hello World', **fields):
    """Create, submit and approve an item; returns the published item (revision 2)."""
    item = create_test_item(owner, title=title, **fields)
    item = LifecycleService.submit(owner, item.id, 0)['item']
    result = LifecycleService.approve(approver, item.id, 1)
    assert result['success'], result['error']
    return result['item']


@pytest.fixture(scope='function')
def admin(app):
    """An Admin principal."""
    return create_test_principal('admin', 'root-admin')


@pytest.fixture(scope='function')
def second_admin(app):
    """Another Admin principal."""
    return create_test_principal('admin', 'other-admin')


@pytest.fixture(scope='function')
def contributor(app):
    """A Contributor without extra scopes."""
    return create_test_principal('contributor', 'writer')


@pytest.fixture(scope='function')
def other_contributor(app):
    """A second Contributor without extra scopes."""
    return create_test_principal('contributor', 'other-writer')


@pytest.fixture(scope='function')
def approver(app):
    """A Contributor holding the can-approve scope."""
    return create_test_principal('contributor', 'editor', scopes=['can-approve'])


def login(client, prefix, username, password=TEST_PASSWORD, bearer=False):
    """
    Log in on a management surface.

    Returns:
        The login response; the session cookie is kept by the client
    """
    body = {'username': username, 'password': password}
    if bearer:
        body['bearer'] = True
    return client.post(f'/management/{prefix}/login', json=body)


@pytest.fixture(scope='function')
def admin_session(client, admin):
    """
    Logged-in Admin on the Admin surface.

    Returns:
        Dict with the CSRF header to send on mutating requests
    """
    response = login(client, ADMIN_PREFIX, admin.username)
    assert response.status_code == 200
    return {'X-CSRF-Token': response.get_json()['csrf_token']}


@pytest.fixture(scope='function')
def contributor_session(client, contributor):
    """Logged-in Contributor on the contributor surface (CSRF header dict)."""
    response = login(client, CONTRIBUTOR_PREFIX, contributor.username)
    assert response.status_code == 200
    return {'X-CSRF-Token': response.get_json()['csrf_token']}
