import subprocess
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence

from fastapi.testclient import TestClient
from PIL import Image

from frame_server import config, main, models
from frame_server.services import state
from frame_server.services.display_power import DisplayPowerController, build_methods
from frame_server.services.documents import MemoryDocumentBackend


def _png_bytes(color: str = 'red') -> bytes:
    buffer = BytesIO()
    Image.new('RGB', (8, 8), color).save(buffer, format='PNG')
    return buffer.getvalue()


def _client(
    tmp_path: Path,
    monkeypatch,
    failing_power: Sequence[str] = ()
) -> TestClient:
    monkeypatch.setattr(config, 'UPLOADS_DIR', str(tmp_path))
    backend = MemoryDocumentBackend()

    def runner(method, command, timeout):
        code = 1 if method.binary in failing_power else 0
        return subprocess.CompletedProcess(list(command), code, '', 'boom' if code else '')

    controller = DisplayPowerController(
        backend,
        methods=build_methods(['vcgencmd', 'xset']),
        runner=runner,
        which=lambda binary: f'/usr/bin/{binary}'
    )
    state.configure(backend, display_power=controller)
    return TestClient(main.app)


def _upload(client: TestClient, name: str = 'beach.png', color: str = 'red') -> dict:
    response = client.post('/api/images/upload', files={'image': (name, _png_bytes(color), 'image/png')})
    assert response.status_code == 200, response.text
    return response.json()


def _active_ids(client: TestClient, collection_id: Optional[str] = None) -> list:
    params = {'collectionId': collection_id} if collection_id else None
    response = client.get('/api/images/active', params=params)
    assert response.status_code == 200
    return [image['id'] for image in response.json()]


def test_upload_creates_active_image_and_toggle_hides_it(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    image = _upload(client)
    assert image['active'] is True
    assert image['collectionIds'] == []
    assert image['originalName'] == 'beach.png'
    assert image['id'] == image['filename'] and image['id'].endswith('.png')
    assert image['path'] == f"/uploads/{image['filename']}"
    assert (tmp_path / image['filename']).exists()
    assert _active_ids(client) == [image['id']]

    response = client.patch(f"/api/images/{image['id']}/toggle")
    assert response.status_code == 200
    assert response.json() == {'success': True, 'active': False}

    assert _active_ids(client) == []
    all_ids = [entry['id'] for entry in client.get('/api/images').json()]
    assert all_ids == [image['id']]


def test_upload_rejects_non_images(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    wrong_extension = client.post('/api/images/upload', files={'image': ('notes.txt', b'hello', 'text/plain')})
    assert wrong_extension.status_code == 400

    fake_png = client.post('/api/images/upload', files={'image': ('fake.png', b'not really a png', 'image/png')})
    assert fake_png.status_code == 400

    empty = client.post('/api/images/upload', files={'image': ('empty.png', b'', 'image/png')})
    assert empty.status_code == 400

    assert client.get('/api/images').json() == []
    assert list(tmp_path.iterdir()) == []


def test_upload_respects_size_limit(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    monkeypatch.setattr(config, 'MAX_UPLOAD_BYTES', 16)

    response = client.post('/api/images/upload', files={'image': ('big.png', _png_bytes(), 'image/png')})
    assert response.status_code == 400
    assert 'limit' in response.json()['message']


def test_set_active_requires_boolean(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)

    assert client.patch(f"/api/images/{image['id']}", json={'active': 'no'}).status_code == 400
    response = client.patch(f"/api/images/{image['id']}", json={'active': False})
    assert response.status_code == 200
    assert response.json()['image']['active'] is False
    assert client.patch('/api/images/missing.png', json={'active': True}).status_code == 404


def test_delete_image_removes_file_and_record(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)

    response = client.delete(f"/api/images/{image['id']}")
    assert response.status_code == 200
    assert response.json() == {'success': True}
    assert not (tmp_path / image['filename']).exists()
    assert client.get('/api/images').json() == []
    assert client.delete(f"/api/images/{image['id']}").status_code == 404
    assert client.patch(f"/api/images/{image['id']}/toggle").status_code == 404


def test_collection_filter_and_cascade_on_delete(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)
    other = _upload(client, 'other.png', 'blue')

    created = client.post('/api/collections', json={'name': '  Trip  '})
    assert created.status_code == 200
    trip = created.json()
    assert trip['name'] == 'Trip'

    added = client.post(f"/api/collections/{trip['id']}/images/{image['id']}")
    assert added.status_code == 200
    assert _active_ids(client, trip['id']) == [image['id']]
    assert _active_ids(client) == [image['id'], other['id']]

    assert client.delete(f"/api/collections/{trip['id']}").status_code == 200
    assert _active_ids(client, trip['id']) == []
    stored = {entry['id']: entry for entry in client.get('/api/images').json()}
    assert trip['id'] not in stored[image['id']]['collectionIds']
    assert set(stored) == {image['id'], other['id']}


def test_collection_validation_and_membership_errors(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)

    assert client.post('/api/collections', json={'name': '   '}).status_code == 400
    assert client.post('/api/collections', json={}).status_code == 400

    trip = client.post('/api/collections', json={'name': 'Trip', 'description': 'Summer'}).json()
    assert trip['description'] == 'Summer'

    assert client.patch(f"/api/collections/{trip['id']}", json={'name': ''}).status_code == 400
    renamed = client.patch(f"/api/collections/{trip['id']}", json={'name': 'Holiday'})
    assert renamed.status_code == 200
    assert renamed.json()['name'] == 'Holiday'
    assert client.patch('/api/collections/missing', json={'name': 'x'}).status_code == 404

    assert client.post(f"/api/collections/missing/images/{image['id']}").status_code == 404
    assert client.post(f"/api/collections/{trip['id']}/images/missing.png").status_code == 404

    client.post(f"/api/collections/{trip['id']}/images/{image['id']}")
    first = client.delete(f"/api/collections/{trip['id']}/images/{image['id']}")
    second = client.delete(f"/api/collections/{trip['id']}/images/{image['id']}")
    assert first.json() == {'success': True, 'changed': True}
    assert second.json() == {'success': True, 'changed': False}

    listed = client.get('/api/collections').json()
    assert [entry['name'] for entry in listed] == ['Holiday']


def test_slideshow_current_and_server_assertion(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)

    response = client.post('/api/slideshow/current', json={'imageId': image['id']})
    assert response.status_code == 200
    assert response.json() == {'success': True, 'currentImageId': image['id']}
    assert client.get('/api/slideshow/state').json()['currentImageId'] == image['id']

    assert client.post('/api/slideshow/current', json={'imageId': 'missing.png'}).status_code == 404
    assert client.get('/api/slideshow/state').json()['currentImageId'] == image['id']

    cleared = client.post('/api/slideshow/current', json={'imageId': None})
    assert cleared.json()['currentImageId'] is None


def test_slideshow_duration_validation(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    ok = client.post('/api/slideshow/duration', json={'duration': 5000})
    assert ok.status_code == 200
    assert ok.json() == {'success': True, 'duration': 5000}

    rejected = client.post('/api/slideshow/duration', json={'duration': 999})
    assert rejected.status_code == 400
    assert rejected.json()['status'] == 'error'
    assert client.get('/api/slideshow/state').json()['duration'] == 5000


def test_active_collection_selection_and_reset_on_delete(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    trip = client.post('/api/collections', json={'name': 'Trip'}).json()

    assert client.post('/api/slideshow/collection', json={'collectionId': 'missing'}).status_code == 404
    selected = client.post('/api/slideshow/collection', json={'collectionId': trip['id']})
    assert selected.json() == {'success': True, 'activeCollectionId': trip['id']}

    client.delete(f"/api/collections/{trip['id']}")
    assert client.get('/api/slideshow/state').json()['activeCollectionId'] is None


def test_unknown_collection_filter_returns_empty_list(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    _upload(client)
    assert _active_ids(client, 'nope') == []


def test_display_toggle_success_and_status(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    assert client.get('/api/display/status').json() == {'isOn': True}

    response = client.post('/api/display/toggle', json={'power': False})
    assert response.status_code == 200
    payload = response.json()
    assert payload['success'] is True
    assert payload['isOn'] is False
    assert payload['method'] == 'vcgencmd'
    assert client.get('/api/display/status').json() == {'isOn': False}

    flipped = client.post('/api/display/toggle', json={})
    assert flipped.json()['isOn'] is True
    assert client.post('/api/display/toggle', json={'power': 'off'}).status_code == 400


def test_display_toggle_failure_lists_attempts(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch, failing_power=['vcgencmd', 'xset'])

    response = client.post('/api/display/toggle', json={'power': False})
    assert response.status_code == 500
    payload = response.json()
    assert payload['success'] is False
    assert payload['isOn'] is True
    assert [attempt['method'] for attempt in payload['attempts']] == ['vcgencmd', 'xset']
    assert payload['error'].startswith('xset')
    assert client.get('/api/display/status').json() == {'isOn': True}


def test_status_reports_library_counts(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    first = _upload(client)
    _upload(client, 'two.png', 'green')
    client.patch(f"/api/images/{first['id']}/toggle")

    payload = client.get('/api/status').json()
    assert payload['library'] == {'images': 2, 'active_images': 1, 'collections': 0}
    assert payload['slideshow']['duration'] == config.DEFAULT_DURATION_MS
    assert payload['display'] == {'isOn': True}
    assert 'cpu_load' in payload['server']


def test_settings_update_display_methods(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    monkeypatch.setattr(config, 'DISPLAY_POWER_METHODS', config.DISPLAY_POWER_METHODS)
    monkeypatch.setattr(config, 'DISPLAY_OUTPUT', config.DISPLAY_OUTPUT)
    monkeypatch.setattr(models, 'save_config_entry', lambda key, value: None)

    assert client.post('/settings/display-methods', json={'methods': ['teleport']}).status_code == 400

    response = client.post('/settings/display-methods', json={'methods': ['xset', 'vcgencmd'], 'output': 'HDMI-A-2'})
    assert response.status_code == 200
    assert response.json()['display_power_methods'] == ['xset', 'vcgencmd']
    settings = client.get('/settings').json()
    assert settings['display_output'] == 'HDMI-A-2'
    assert 'tvservice' in settings['available_display_power_methods']


def test_activity_log_records_uploads(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    image = _upload(client)

    entries = client.get('/server/log', params={'format': 'json', 'limit': 200}).json()
    assert any(image['filename'] in entry['info'] for entry in entries)


def test_root_serves_viewer_page(tmp_path: Path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    response = client.get('/')
    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/html')
    assert response.headers['cache-control'] == 'no-cache'
    assert '/api/slideshow/state' in response.text


def test_activity_log_keeps_only_newest_entries(monkeypatch):
    monkeypatch.setattr(config, 'MAX_LOG_ENTRIES', 3)
    for index in range(5):
        models.add_log_entry('Retention', f'entry {index}')

    entries = models.recent_logs(limit=10)
    assert [entry.info for entry in entries] == ['entry 2', 'entry 3', 'entry 4']
    newer = models.logs_after(entries[0].id, limit=10)
    assert [entry.info for entry in newer] == ['entry 3', 'entry 4']
