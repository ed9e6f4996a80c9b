"""
Unit tests for the Payload REST store

Tests:
- Where clause flattening into query parameters
- JSON and multipart writes
- Error mapping (404, validation errors, network errors)
- Paged bulk deletes
- Connection validation
"""

import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock

import requests

from cms_migrate.errors import RecordNotFoundError, TargetStoreError
from cms_migrate.loaders.payload_store import PayloadRESTStore, where_params
from cms_migrate.models.record import FileAttachment


def api_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = json.dumps(body) if body is not None else ""
    response.json.return_value = body
    return response


class TestWhereParams(unittest.TestCase):

    def test_plain_values_are_equality(self):
        self.assertEqual(where_params({"slug": "calm"}), {"where[slug][equals]": "calm"})

    def test_operators_lists_and_booleans(self):
        params = where_params({
            "filename": {"contains": "pose"},
            "id": {"in": [1, 2]},
            "isPublished": {"equals": True},
        })

        self.assertEqual(params, {
            "where[filename][contains]": "pose",
            "where[id][in]": "1,2",
            "where[isPublished][equals]": "true",
        })

    def test_empty_where(self):
        self.assertEqual(where_params(None), {})


class TestPayloadRESTStore(unittest.TestCase):
    """Test PayloadRESTStore against a mocked session"""

    def setUp(self):
        self.session = MagicMock()
        self.store = PayloadRESTStore("http://cms.local/", api_key="secret", rate_limit=0, session=self.session)

    def test_create_posts_json(self):
        self.session.request.return_value = api_response(201, {"doc": {"id": "t1", "name": "calm"}})

        doc = self.store.create("meditation-tags", {"name": "calm"})

        self.assertEqual(doc, {"id": "t1", "name": "calm"})
        method, url = self.session.request.call_args[0]
        kwargs = self.session.request.call_args[1]
        self.assertEqual((method, url), ("POST", "http://cms.local/api/meditation-tags"))
        self.assertEqual(kwargs["json"], {"name": "calm"})
        self.assertIsNone(kwargs["files"])
        self.assertIsNone(kwargs["params"])

    def test_create_with_file_is_multipart(self):
        self.session.request.return_value = api_response(201, {"doc": {"id": "m1"}})
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "rain.mp3")
            with open(path, "wb") as f:
                f.write(b"audio")

            self.store.create(
                "music",
                {"title": "Rain"},
                file=FileAttachment(path=path, filename="rain.mp3", mime_type="audio/mpeg"),
                locale="en",
            )

        kwargs = self.session.request.call_args[1]
        self.assertEqual(json.loads(kwargs["data"]["_payload"]), {"title": "Rain"})
        filename, _, mime_type = kwargs["files"]["file"]
        self.assertEqual((filename, mime_type), ("rain.mp3", "audio/mpeg"))
        self.assertEqual(kwargs["params"], {"locale": "en"})
        self.assertIsNone(kwargs["json"])

    def test_update_patches(self):
        self.session.request.return_value = api_response(200, {"doc": {"id": "m1", "title": "New"}})

        doc = self.store.update("meditations", "m1", {"title": "New"}, locale="en")

        self.assertEqual(doc["title"], "New")
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ("PATCH", "http://cms.local/api/meditations/m1"))

    def test_find_passes_where_and_paging(self):
        self.session.request.return_value = api_response(200, {"docs": [{"id": "1"}], "totalDocs": 1})

        page = self.store.find("music", where={"slug": "rain"}, limit=5, page=2)

        self.assertEqual(page["docs"], [{"id": "1"}])
        params = self.session.request.call_args[1]["params"]
        self.assertEqual(params["where[slug][equals]"], "rain")
        self.assertEqual((params["limit"], params["page"], params["depth"]), (5, 2, 0))

    def test_find_one(self):
        self.session.request.return_value = api_response(200, {"docs": []})

        self.assertIsNone(self.store.find_one("music", {"slug": "rain"}))

    def test_missing_record_raises_not_found(self):
        self.session.request.return_value = api_response(404, {"errors": [{"message": "Not Found"}]})

        with self.assertRaises(RecordNotFoundError) as ctx:
            self.store.find_by_id("media", "gone")

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertFalse(self.store.exists("media", "gone"))

    def test_validation_errors_are_collected(self):
        self.session.request.return_value = api_response(400, {"errors": [{
            "message": "The following field is invalid: slug",
            "data": {"errors": [{"path": "slug", "message": "Value must be unique"}]},
        }]})

        with self.assertRaises(TargetStoreError) as ctx:
            self.store.create("meditations", {"slug": "calm"})

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("slug: Value must be unique", str(ctx.exception))

    def test_network_errors_become_store_errors(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(TargetStoreError):
            self.store.find("music")

    def test_bulk_delete_repeats_until_empty(self):
        self.session.request.side_effect = [
            api_response(200, {"docs": [{"id": "1"}, {"id": "2"}]}),
            api_response(200, {"docs": [{"id": "3"}]}),
            api_response(200, {"docs": []}),
        ]

        deleted = self.store.delete("frames")

        self.assertEqual(deleted, 3)
        self.assertEqual(self.session.request.call_count, 3)
        params = self.session.request.call_args[1]["params"]
        self.assertEqual(params, {"where[id][exists]": "true"})

    def test_delete_by_id(self):
        self.session.request.return_value = api_response(200, {"doc": {"id": "1"}})

        self.assertEqual(self.store.delete("frames", id="1"), 1)
        self.assertEqual(self.session.request.call_args[0], ("DELETE", "http://cms.local/api/frames/1"))

    def test_validate_connection(self):
        self.session.get.return_value = api_response(401)
        self.assertTrue(self.store.validate_connection())

        self.session.get.return_value = api_response(503)
        self.assertFalse(self.store.validate_connection())

        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        self.assertFalse(self.store.validate_connection())

    def test_api_key_header(self):
        store = PayloadRESTStore("http://cms.local", api_key="secret")

        self.assertEqual(store._session.headers["Authorization"], "users API-Key secret")
