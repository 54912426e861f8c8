"""
Keeps objects behind a generic RESTful API in sync with declared JSON documents.

.. important:: This library only does the per-object work (send requests, learn ids, report
    drift). Deciding *when* to create/update/delete is up to whatever drives it.

# Overview

There are two main classes:

- `xrestsync.remote.client.APIClient`: one per API. Knows the base uri, how to authenticate,
  the rate limit, TLS settings, retries and the defaults for every object (http methods,
  where the id is in the JSON, etc).
- `xrestsync.remote.api_object.APIObject`: one per managed object. Knows the object's paths
  and its declared document (`APIObject.data`), and keeps track of the id along with what the
  API last said about it (`APIObject.api_data`).

>>> from xrestsync import APIClient, APIObject
>>> client = APIClient(uri="https://api.example.com", write_returns_object=True)
>>> obj = APIObject(client, path="/api/objects", data='{"name": "potato"}')
>>> obj.create()
>>> obj.id
'1234'

## Lifecycle

- `APIObject.create`: sends the declared data, learns the id from the response (or from the
  declared data), then reads the object back unless the response is authoritative.
- `APIObject.read`: refreshes `APIObject.api_data`. If the object is gone (`404`, or it could
  not be found in a search) the id is cleared and no error is raised; check `APIObject.id`.
- `APIObject.update`: sends the declared data (or `update_data`).
- `APIObject.delete`: an object that is already gone (`404` / `410`) counts as deleted.

## Drift

After a read, `APIObject.compute_delta` compares the declared data with what the API
returned, see `xrestsync.delta.get_delta`:

>>> modified, has_changes = obj.compute_delta(ignore_paths=["metadata.revision"])

A declared `null` is the same as the key not being there at all (many API's don't return
null fields), and keys only the server has are drift unless `ignore_server_additions` is set.

## Search

When an object's id can't be known up-front, a `xrestsync.remote.options.ReadSearch` lets
a read find it in a collection instead:

>>> obj = APIObject(
...     client,
...     path="/api/objects",
...     data={"name": "potato"},
...     read_search=ReadSearch(search_key="name", search_value="potato", results_key="data")
... )

## Configuration

Anything not set on an `APIObject` comes from its `APIClient`, and anything not set on a
`APIClient` comes from a `REST_API_*` environment variable (via the
`xrestsync.remote.options.EnvironSettings` dependency) or a hard-coded default.
See `xrestsync.remote.options` for the details.

## Errors

Everything raised derives from `xrestsync.errors.XRestSyncError`; the errors that are about
talking to the API are in `xrestsync.remote.errors`.
"""

from .errors import (
    XRestSyncError, ConfigInvalidError, KeyPathError, KeyPathTypeError, DecodeError,
    IdentityMissingError, SearchNoMatchError, SearchShapeError, InternalInvariantError
)
from .delta import get_delta
from .remote import (
    APIClient, APIObject, ClientOptions, ObjectOptions, ReadSearch, RetryOptions,
    OAuthClientCredentials, EnvironSettings, ResponseState
)


__all__ = [
    'APIClient',
    'APIObject',
    'ClientOptions',
    'ObjectOptions',
    'ReadSearch',
    'RetryOptions',
    'OAuthClientCredentials',
    'EnvironSettings',
    'ResponseState',
    'XRestSyncError',
    'ConfigInvalidError',
    'get_delta'
]

__version__ = '0.1.0'
