from typing import Optional

from mcdreforged.api.utils import Serializable

from chunkvault.types.units import Duration


class IndexConfig(Serializable):
	# skip the backend existence check for chunks the dedup index knows
	trust_index: bool = True

	# index entries confirmed longer ago than this are checked against the backend again. None: never expire
	reconfirm_after: Optional[Duration] = None
