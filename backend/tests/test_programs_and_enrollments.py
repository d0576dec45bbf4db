import uuid

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app.main import app
from app.database import engine
from app import models, repositories
from app.errors import BadRequestError

client = TestClient(app)


def _program(headers, name=None, description='Community program'):
    name = name or f'Program {uuid.uuid4().hex[:8]}'
    r = client.post('/v1/programs', json={'name': name, 'description': description}, headers=headers)
    assert r.status_code == 201
    return r.json()


def _client(headers):
    payload = {
        'full_name': f'Baraka {uuid.uuid4().hex[:8]}',
        'dob': '1985-01-30',
        'gender': 'male',
        'contact': f'07{uuid.uuid4().int % 10**8:08d}',
    }
    r = client.post('/v1/clients', json=payload, headers=headers)
    assert r.status_code == 201
    return r.json()


def test_program_crud(auth_headers):
    created = _program(auth_headers, description='TB treatment')
    got = client.get(f"/v1/programs/{created['id']}", headers=auth_headers)
    assert got.status_code == 200
    assert got.json()['description'] == 'TB treatment'

    renamed = f"Renamed {uuid.uuid4().hex[:8]}"
    r = client.patch(f"/v1/programs/{created['id']}", json={'name': renamed}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['name'] == renamed
    # renaming to its own current name is not a conflict
    same = client.patch(f"/v1/programs/{created['id']}", json={'name': renamed}, headers=auth_headers)
    assert same.status_code == 200

    d = client.delete(f"/v1/programs/{created['id']}", headers=auth_headers)
    assert d.status_code == 204
    missing = client.get(f"/v1/programs/{created['id']}", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()['detail'] == 'Health Program not found'


def test_program_names_are_unique(auth_headers):
    first = _program(auth_headers)
    dup = client.post('/v1/programs', json={'name': first['name']}, headers=auth_headers)
    assert dup.status_code == 400
    assert dup.json()['detail'] == 'Program name already exists'
    second = _program(auth_headers)
    clash = client.patch(f"/v1/programs/{second['id']}", json={'name': first['name']}, headers=auth_headers)
    assert clash.status_code == 400


def test_unique_constraint_race_reported_as_bad_request(auth_headers):
    first = _program(auth_headers)
    with Session(engine) as session:
        repo = repositories.ProgramRepository(session)
        before = repo.count()
        # skips the service-level name check, as a concurrent request would
        with pytest.raises(BadRequestError, match='Program name already exists'):
            repo.create(models.HealthProgram(name=first['name']))
        assert repo.count() == before


def test_program_search(auth_headers):
    tag = uuid.uuid4().hex[:8]
    _program(auth_headers, name=f'Malaria {tag}')
    _program(auth_headers, name=f'HIV {tag}')
    r = client.get('/v1/programs', params={'search': f'malaria {tag}'}, headers=auth_headers)
    assert r.status_code == 200
    names = [p['name'] for p in r.json()['results']]
    assert names == [f'Malaria {tag}']
    both = client.get('/v1/programs', params={'search': tag, 'sort_by': 'name:desc'}, headers=auth_headers).json()
    assert [p['name'] for p in both['results']] == [f'Malaria {tag}', f'HIV {tag}']


def test_enroll_client_and_view_profile(auth_headers):
    c = _client(auth_headers)
    p = _program(auth_headers)
    r = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id'], 'notes': 'first visit'}, headers=auth_headers)
    assert r.status_code == 201
    enrollment = r.json()
    assert enrollment['status'] == 'active'

    profile = client.get(f"/v1/clients/{c['id']}", headers=auth_headers).json()
    assert len(profile['enrollments']) == 1
    assert profile['enrollments'][0]['program']['name'] == p['name']

    detail = client.get(f"/v1/enrollments/{enrollment['id']}", headers=auth_headers)
    assert detail.status_code == 200
    assert detail.json()['client']['id'] == c['id']
    assert detail.json()['program']['id'] == p['id']


def test_enrollment_checks(auth_headers):
    c = _client(auth_headers)
    p = _program(auth_headers)
    missing_client = client.post('/v1/enrollments', json={'client_id': str(uuid.uuid4()), 'program_id': p['id']}, headers=auth_headers)
    assert missing_client.status_code == 404
    assert missing_client.json()['detail'] == 'Client not found'
    missing_program = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': str(uuid.uuid4())}, headers=auth_headers)
    assert missing_program.status_code == 404
    assert missing_program.json()['detail'] == 'Health Program not found'

    ok = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers)
    assert ok.status_code == 201
    dup = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers)
    assert dup.status_code == 400
    assert dup.json()['detail'] == 'Client is already enrolled in this program'

    bad_status = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id'], 'status': 'paused'}, headers=auth_headers)
    assert bad_status.status_code == 422


def test_client_enrollments_listing(auth_headers):
    c = _client(auth_headers)
    programs = [_program(auth_headers) for _ in range(3)]
    for p in programs:
        client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers)
    other = _client(auth_headers)
    client.post('/v1/enrollments', json={'client_id': other['id'], 'program_id': programs[0]['id']}, headers=auth_headers)

    r = client.get(f"/v1/enrollments/client/{c['id']}", params={'limit': 2}, headers=auth_headers)
    assert r.status_code == 200
    page = r.json()
    assert page['total_results'] == 3
    assert page['has_next_page'] is True
    assert all(e['client']['id'] == c['id'] for e in page['results'])
    # newest enrollment first by default
    assert page['results'][0]['program']['id'] == programs[-1]['id']

    missing = client.get(f'/v1/enrollments/client/{uuid.uuid4()}', headers=auth_headers)
    assert missing.status_code == 404

    by_program = client.get('/v1/enrollments', params={'program_id': programs[0]['id']}, headers=auth_headers).json()
    assert by_program['total_results'] == 2


def test_update_and_delete_enrollment(auth_headers):
    c = _client(auth_headers)
    p = _program(auth_headers)
    e = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers).json()

    r = client.patch(f"/v1/enrollments/{e['id']}", json={'status': 'dropped', 'notes': 'moved away'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['status'] == 'dropped'
    assert r.json()['notes'] == 'moved away'

    dropped = client.get('/v1/enrollments', params={'client_id': c['id'], 'status': 'dropped'}, headers=auth_headers).json()
    assert dropped['total_results'] == 1
    active = client.get('/v1/enrollments', params={'client_id': c['id'], 'status': 'active'}, headers=auth_headers).json()
    assert active['total_results'] == 0

    assert client.patch(f"/v1/enrollments/{e['id']}", json={'status': None}, headers=auth_headers).status_code == 422
    assert client.delete(f"/v1/enrollments/{e['id']}", headers=auth_headers).status_code == 204
    gone = client.delete(f"/v1/enrollments/{e['id']}", headers=auth_headers)
    assert gone.status_code == 404
    assert gone.json()['detail'] == 'Enrollment not found'


def test_deleting_client_or_program_removes_enrollments(auth_headers):
    c = _client(auth_headers)
    p = _program(auth_headers)
    e = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers).json()
    assert client.delete(f"/v1/clients/{c['id']}", headers=auth_headers).status_code == 204
    assert client.get(f"/v1/enrollments/{e['id']}", headers=auth_headers).status_code == 404

    c2 = _client(auth_headers)
    e2 = client.post('/v1/enrollments', json={'client_id': c2['id'], 'program_id': p['id']}, headers=auth_headers).json()
    assert client.delete(f"/v1/programs/{p['id']}", headers=auth_headers).status_code == 204
    assert client.get(f"/v1/enrollments/{e2['id']}", headers=auth_headers).status_code == 404
    assert client.get(f"/v1/clients/{c2['id']}", headers=auth_headers).json()['enrollments'] == []
