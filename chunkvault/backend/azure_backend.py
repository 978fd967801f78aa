import email.utils
import threading
import urllib.parse
from typing import Iterator, Optional, Dict
from xml.etree import ElementTree

import httpx

from chunkvault.backend.base import BlobBackend, BlobStat
from chunkvault.exceptions import BlobNotFound, FatalBackendError, TransientBackendError, BackendError

_API_VERSION = '2021-08-06'
_LIST_PAGE_SIZE = 5000


class AzureBlobBackend(BlobBackend):
	"""
	An Azure Blob Storage container, reached through a container SAS url.
	Every key is one block blob, uploaded with a single Put Blob call
	"""

	def __init__(self, sas_url: str, *, timeout: float = 60, max_connections: int = 8, transport: Optional[httpx.BaseTransport] = None):
		parts = urllib.parse.urlsplit(sas_url)
		if parts.scheme not in ('http', 'https') or not parts.netloc or parts.path.strip('/') == '':
			raise FatalBackendError('bad container sas url, expected https://<account>.blob.core.windows.net/<container>?<sas>')
		self.container_url = urllib.parse.urlunsplit((parts.scheme, parts.netloc, parts.path.rstrip('/'), '', ''))
		self.__sas_params: Dict[str, str] = dict(urllib.parse.parse_qsl(parts.query, keep_blank_values=True))
		self.__client = httpx.Client(
			params=self.__sas_params,
			headers={'x-ms-version': _API_VERSION},
			timeout=timeout,
			limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
			transport=transport,
		)
		self.__close_lock = threading.Lock()

	@property
	def namespace(self) -> str:
		return self.container_url

	def close(self):
		with self.__close_lock:
			self.__client.close()

	# ============================== Http ==============================

	def __blob_url(self, key: str) -> str:
		return '{}/{}'.format(self.container_url, urllib.parse.quote(key, safe='/'))

	def __request(self, method: str, url: str, what: str, **kwargs) -> httpx.Response:
		try:
			return self.__client.request(method, url, **kwargs)
		except httpx.TimeoutException as e:
			raise TransientBackendError('{} timed out: {}'.format(what, e)) from e
		except httpx.TransportError as e:
			raise TransientBackendError('{} connection error: {}'.format(what, e)) from e

	@classmethod
	def __error_of(cls, response: httpx.Response, what: str) -> BackendError:
		code = response.headers.get('x-ms-error-code', '')
		msg = '{} failed with http {} {}'.format(what, response.status_code, code).rstrip()
		if response.status_code >= 500 or response.status_code in (408, 429):
			return TransientBackendError(msg)
		return FatalBackendError(msg)

	# ============================== Operations ==============================

	def exists(self, key: str) -> bool:
		what = 'exists {}'.format(key)
		response = self.__request('HEAD', self.__blob_url(key), what)
		if response.status_code == 200:
			return True
		if response.status_code == 404:
			return False
		raise self.__error_of(response, what)

	def put(self, key: str, data: bytes):
		what = 'put {}'.format(key)
		response = self.__request('PUT', self.__blob_url(key), what, content=data, headers={
			'x-ms-blob-type': 'BlockBlob',
			'Content-Type': 'application/octet-stream',
		})
		if response.status_code != 201:
			raise self.__error_of(response, what)

	def get(self, key: str) -> bytes:
		what = 'get {}'.format(key)
		response = self.__request('GET', self.__blob_url(key), what)
		if response.status_code == 200:
			return response.content
		if response.status_code == 404:
			raise BlobNotFound(key)
		raise self.__error_of(response, what)

	def delete(self, key: str):
		what = 'delete {}'.format(key)
		response = self.__request('DELETE', self.__blob_url(key), what)
		if response.status_code not in (200, 202, 404):
			raise self.__error_of(response, what)

	def list_blobs(self, prefix: str = '') -> Iterator[BlobStat]:
		marker: Optional[str] = None
		while True:
			params = {'restype': 'container', 'comp': 'list', 'maxresults': str(_LIST_PAGE_SIZE)}
			if prefix:
				params['prefix'] = prefix
			if marker:
				params['marker'] = marker
			what = 'list {}'.format(prefix)
			response = self.__request('GET', self.container_url, what, params=params)
			if response.status_code != 200:
				raise self.__error_of(response, what)

			try:
				root = ElementTree.fromstring(response.content)
			except ElementTree.ParseError as e:
				raise TransientBackendError('{}: malformed response: {}'.format(what, e)) from e
			for blob in root.iterfind('./Blobs/Blob'):
				yield self.__parse_blob_item(blob)

			marker = root.findtext('NextMarker')
			if not marker:
				break

	@classmethod
	def __parse_blob_item(cls, blob: ElementTree.Element) -> BlobStat:
		last_modified = blob.findtext('Properties/Last-Modified')
		mtime_ns = 0
		if last_modified:
			mtime_ns = int(email.utils.parsedate_to_datetime(last_modified).timestamp()) * 10 ** 9
		return BlobStat(
			key=blob.findtext('Name', ''),
			size=int(blob.findtext('Properties/Content-Length', '0')),
			mtime_ns=mtime_ns,
		)
