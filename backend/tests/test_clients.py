import uuid

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def _client_payload(**overrides):
    payload = {
        'full_name': f'Amina {uuid.uuid4().hex[:8]}',
        'dob': '1990-04-12',
        'gender': 'female',
        'contact': f'+2547{uuid.uuid4().int % 10**8:08d}',
        'notes': 'referred by CHW',
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_client(registered, auth_headers):
    r = client.post('/v1/clients', json=_client_payload(), headers=auth_headers)
    assert r.status_code == 201
    created = r.json()
    assert created['user_id'] == registered['user']['id']
    profile = client.get(f"/v1/clients/{created['id']}", headers=auth_headers)
    assert profile.status_code == 200
    assert profile.json()['full_name'] == created['full_name']
    assert profile.json()['enrollments'] == []


def test_duplicate_name_and_contact_rejected(auth_headers):
    payload = _client_payload()
    assert client.post('/v1/clients', json=payload, headers=auth_headers).status_code == 201
    dup = client.post('/v1/clients', json=payload, headers=auth_headers)
    assert dup.status_code == 400
    assert dup.json()['detail'] == 'Client with this name and contact number already exists'
    # same name with a different contact is a different person
    other = client.post('/v1/clients', json=_client_payload(full_name=payload['full_name']), headers=auth_headers)
    assert other.status_code == 201


def test_create_client_validates_body(auth_headers):
    r = client.post('/v1/clients', json=_client_payload(dob='not-a-date'), headers=auth_headers)
    assert r.status_code == 422
    r2 = client.post('/v1/clients', json=_client_payload(full_name='   '), headers=auth_headers)
    assert r2.status_code == 422


def test_search_filters_and_paginates(auth_headers):
    tag = uuid.uuid4().hex[:8]
    for i in range(3):
        client.post('/v1/clients', json=_client_payload(full_name=f'Search {tag} {i}', gender='male'), headers=auth_headers)
    client.post('/v1/clients', json=_client_payload(full_name=f'Search {tag} f', gender='female'), headers=auth_headers)

    r = client.get('/v1/clients', params={'search': tag.upper(), 'limit': 2, 'sort_by': 'full_name:asc'}, headers=auth_headers)
    assert r.status_code == 200
    page = r.json()
    assert page['total_results'] == 4
    assert page['total_pages'] == 2
    assert page['has_next_page'] is True
    assert [c['full_name'] for c in page['results']] == [f'Search {tag} 0', f'Search {tag} 1']

    males = client.get('/v1/clients', params={'search': tag, 'gender': 'MALE'}, headers=auth_headers).json()
    assert males['total_results'] == 3

    second = client.get('/v1/clients', params={'search': tag, 'limit': 2, 'page': 2, 'sort_by': 'full_name'}, headers=auth_headers).json()
    assert second['has_next_page'] is False
    assert len(second['results']) == 2


def test_search_by_contact(auth_headers):
    payload = _client_payload()
    client.post('/v1/clients', json=payload, headers=auth_headers)
    r = client.get('/v1/clients', params={'search': payload['contact'][-6:]}, headers=auth_headers)
    assert any(c['contact'] == payload['contact'] for c in r.json()['results'])


def test_invalid_sort_and_limit(auth_headers):
    r = client.get('/v1/clients', params={'sort_by': 'contact:asc'}, headers=auth_headers)
    assert r.status_code == 400
    assert 'Unsupported sort field' in r.json()['detail']
    assert client.get('/v1/clients', params={'limit': 0}, headers=auth_headers).status_code == 422
    assert client.get('/v1/clients', params={'limit': 1000}, headers=auth_headers).status_code == 422


def test_page_beyond_sql_offset_range_rejected(auth_headers):
    r = client.get('/v1/clients', params={'page': 10**18, 'limit': 100}, headers=auth_headers)
    assert r.status_code == 422
    last = client.get('/v1/clients', params={'page': 2**40, 'limit': 100}, headers=auth_headers)
    assert last.status_code == 200
    assert last.json()['results'] == []


def test_update_client(auth_headers):
    created = client.post('/v1/clients', json=_client_payload(), headers=auth_headers).json()
    r = client.patch(f"/v1/clients/{created['id']}", json={'notes': None, 'gender': 'other'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['gender'] == 'other'
    assert r.json()['notes'] is None
    assert r.json()['full_name'] == created['full_name']

    null_name = client.patch(f"/v1/clients/{created['id']}", json={'full_name': None}, headers=auth_headers)
    assert null_name.status_code == 422
    unknown_field = client.patch(f"/v1/clients/{created['id']}", json={'user_id': str(uuid.uuid4())}, headers=auth_headers)
    assert unknown_field.status_code == 422


def test_update_client_into_duplicate_rejected(auth_headers):
    a = client.post('/v1/clients', json=_client_payload(), headers=auth_headers).json()
    b = client.post('/v1/clients', json=_client_payload(), headers=auth_headers).json()
    r = client.patch(f"/v1/clients/{b['id']}", json={'full_name': a['full_name'], 'contact': a['contact']}, headers=auth_headers)
    assert r.status_code == 400


def test_missing_client_returns_404(auth_headers):
    missing = uuid.uuid4()
    assert client.get(f'/v1/clients/{missing}', headers=auth_headers).status_code == 404
    assert client.patch(f'/v1/clients/{missing}', json={'notes': 'x'}, headers=auth_headers).status_code == 404
    r = client.delete(f'/v1/clients/{missing}', headers=auth_headers)
    assert r.status_code == 404
    assert r.json()['detail'] == 'Client not found'
    assert client.get('/v1/clients/not-a-uuid', headers=auth_headers).status_code == 422


def test_delete_client(auth_headers):
    created = client.post('/v1/clients', json=_client_payload(), headers=auth_headers).json()
    r = client.delete(f"/v1/clients/{created['id']}", headers=auth_headers)
    assert r.status_code == 204
    assert client.get(f"/v1/clients/{created['id']}", headers=auth_headers).status_code == 404


def test_statistics(auth_headers):
    before = client.get('/v1/clients/statistics', headers=auth_headers)
    assert before.status_code == 200
    before = before.json()

    c = client.post('/v1/clients', json=_client_payload(), headers=auth_headers).json()
    p = client.post('/v1/programs', json={'name': f'Stats {uuid.uuid4().hex[:8]}'}, headers=auth_headers).json()
    e = client.post('/v1/enrollments', json={'client_id': c['id'], 'program_id': p['id']}, headers=auth_headers).json()
    client.patch(f"/v1/enrollments/{e['id']}", json={'status': 'completed'}, headers=auth_headers)

    after = client.get('/v1/clients/statistics', headers=auth_headers).json()
    assert after['client']['total'] == before['client']['total'] + 1
    assert after['programs']['total'] == before['programs']['total'] + 1
    assert after['enrollments']['total'] == before['enrollments']['total'] + 1
    dist = after['enrollments']['distribution']
    assert dist['completed'] == before['enrollments']['distribution']['completed'] + 1
    assert set(dist) == {'active', 'completed', 'dropped'}
    assert len(after['client']['recent']) <= 5
    assert c['id'] in [r['id'] for r in after['client']['recent']]
