import enum
from typing import Optional, Any

from mcdreforged.api.utils import Serializable

from chunkvault.types.units import Duration


class BackendType(enum.Enum):
	local = enum.auto()
	azure = enum.auto()


class BackendConfig(Serializable):
	type: BackendType = BackendType.local

	# local: directory of the blob store
	local_root: str = './remote'

	# azure: container url with a SAS token, e.g. https://acc.blob.core.windows.net/container?sv=...&sig=...
	sas_url: Optional[str] = None

	# per call, counted towards the retry budget of the operation
	timeout: Duration = Duration('60s')

	# max concurrent exists / put calls. It is the backpressure towards the backend
	max_concurrency: int = 4

	def validate_attribute(self, attr_name: str, attr_value: Any, **kwargs):
		if attr_name == 'max_concurrency' and attr_value < 1:
			raise ValueError('max_concurrency should be at least 1')

	def on_deserialization(self, **kwargs):
		if self.type == BackendType.azure and not self.sas_url:
			raise ValueError('sas_url is required for the azure backend')
