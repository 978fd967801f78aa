from mcdreforged.api.utils import Serializable

from chunkvault.types.units import Duration


class GcConfig(Serializable):
	# unreferenced chunks younger than this are kept, since a backup running elsewhere
	# might have uploaded them without committing its manifest yet
	grace_period: Duration = Duration('1d')
