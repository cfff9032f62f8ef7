import json
from pathlib import Path
from unittest.mock import patch

import pytest

from frame_server.services.documents import (
    COLLECTIONS_DOCUMENT,
    IMAGES_DOCUMENT,
    FileDocumentBackend,
    MemoryDocumentBackend,
    StorageError,
)
from frame_server.services.store import CollectionRecord, ImageRecord, MetadataStore


def _image(image_id: str, active: bool = True) -> ImageRecord:
    return ImageRecord(
        id=image_id,
        filename=image_id,
        original_name=f'{image_id}-original.png',
        path=f'/uploads/{image_id}',
        uploaded_at='2024-01-01T00:00:00+00:00',
        active=active
    )


def _collection(collection_id: str, name: str = 'Trip') -> CollectionRecord:
    return CollectionRecord(id=collection_id, name=name, created_at='2024-01-01T00:00:00+00:00')


def _store_with(*image_ids: str) -> MetadataStore:
    store = MetadataStore(MemoryDocumentBackend())
    for image_id in image_ids:
        store.add_image(_image(image_id))
    return store


def test_active_images_keep_insertion_order_and_skip_inactive():
    store = _store_with('a.png', 'b.png', 'c.png')
    store.set_image_active('b.png', False)

    assert [image.id for image in store.list_images()] == ['a.png', 'b.png', 'c.png']
    assert [image.id for image in store.list_active_images()] == ['a.png', 'c.png']


def test_inactive_image_never_listed_even_inside_collection():
    store = _store_with('a.png', 'b.png')
    store.add_collection(_collection('trip'))
    store.add_image_to_collection('a.png', 'trip')
    store.add_image_to_collection('b.png', 'trip')

    assert store.toggle_image_active('a.png') is False
    assert [image.id for image in store.list_active_images('trip')] == ['b.png']
    assert store.toggle_image_active('a.png') is True
    assert [image.id for image in store.list_active_images('trip')] == ['a.png', 'b.png']


def test_unknown_ids_report_not_found():
    store = _store_with('a.png')
    assert store.remove_image('missing') is False
    assert store.set_image_active('missing', True) is False
    assert store.toggle_image_active('missing') is None
    assert store.update_collection('missing', name='x') is False
    assert store.remove_collection('missing') is False
    assert store.add_image_to_collection('a.png', 'missing') is False


def test_remove_collection_detaches_images_without_deleting_them():
    store = _store_with('a.png', 'b.png')
    store.add_collection(_collection('trip'))
    store.add_collection(_collection('home', 'Home'))
    store.add_image_to_collection('a.png', 'trip')
    store.add_image_to_collection('a.png', 'home')
    store.add_image_to_collection('b.png', 'trip')

    assert store.remove_collection('trip') is True

    images = store.list_images()
    assert [image.id for image in images] == ['a.png', 'b.png']
    assert all('trip' not in image.collection_ids for image in images)
    assert store.get_image('a.png').collection_ids == ['home']
    assert [entry.id for entry in store.list_collections()] == ['home']


def test_membership_add_is_idempotent_and_remove_reports_change():
    store = _store_with('a.png')
    store.add_collection(_collection('trip'))

    assert store.add_image_to_collection('a.png', 'trip') is True
    assert store.add_image_to_collection('a.png', 'trip') is True
    assert store.get_image('a.png').collection_ids == ['trip']

    assert store.remove_image_from_collection('a.png', 'trip') is True
    assert store.remove_image_from_collection('a.png', 'trip') is False
    assert store.get_image('a.png').collection_ids == []


def test_collection_names_are_trimmed_and_validated():
    store = MetadataStore(MemoryDocumentBackend())
    created = store.add_collection(_collection('trip', '  Summer Trip  '))
    assert created.name == 'Summer Trip'

    with pytest.raises(ValueError):
        store.add_collection(_collection('blank', '   '))
    with pytest.raises(ValueError):
        store.update_collection('trip', name='')

    assert store.update_collection('trip', description='Beach photos') is True
    updated = store.get_collection('trip')
    assert updated.name == 'Summer Trip'
    assert updated.to_dict()['description'] == 'Beach photos'
    assert [entry.id for entry in store.list_collections()] == ['trip']


def test_corrupt_documents_fail_open():
    backend = MemoryDocumentBackend({
        IMAGES_DOCUMENT: '{not json',
        COLLECTIONS_DOCUMENT: json.dumps({'unexpected': 'shape'})
    })
    store = MetadataStore(backend)

    assert store.list_images() == []
    assert store.list_collections() == []


def test_malformed_entries_are_skipped():
    backend = MemoryDocumentBackend({
        IMAGES_DOCUMENT: json.dumps([
            {'id': 'a.png', 'filename': 'a.png', 'active': True},
            {'filename': 'no-id.png'},
            'garbage'
        ])
    })
    images = MetadataStore(backend).list_images()
    assert [image.id for image in images] == ['a.png']
    assert images[0].collection_ids == []
    assert images[0].path == '/uploads/a.png'


def test_documents_are_written_as_camel_case_arrays():
    backend = MemoryDocumentBackend()
    store = MetadataStore(backend)
    store.add_image(_image('a.png'))

    stored = json.loads(backend.documents[IMAGES_DOCUMENT])
    assert stored == [{
        'id': 'a.png',
        'filename': 'a.png',
        'originalName': 'a.png-original.png',
        'path': '/uploads/a.png',
        'uploadedAt': '2024-01-01T00:00:00+00:00',
        'active': True,
        'collectionIds': []
    }]


def test_write_failure_surfaces_and_loses_only_that_mutation():
    backend = MemoryDocumentBackend()
    store = MetadataStore(backend)
    store.add_image(_image('a.png'))

    with patch.object(backend, 'write', side_effect=OSError('disk full')):
        with pytest.raises(StorageError):
            store.add_image(_image('b.png'))

    assert [image.id for image in store.list_images()] == ['a.png']


def test_file_backend_round_trips_and_leaves_no_temp_files(tmp_path: Path):
    backend = FileDocumentBackend(str(tmp_path / 'data'))
    store = MetadataStore(backend)
    store.add_image(_image('a.png'))
    store.add_collection(_collection('trip'))

    reopened = MetadataStore(FileDocumentBackend(str(tmp_path / 'data')))
    assert [image.id for image in reopened.list_images()] == ['a.png']
    assert [entry.name for entry in reopened.list_collections()] == ['Trip']
    assert sorted(path.name for path in (tmp_path / 'data').iterdir()) == ['collections.json', 'images.json']
