from typing import Any

from mcdreforged.api.utils import Serializable

from chunkvault.types.units import Duration


class RetryConfig(Serializable):
	max_attempts: int = 5
	base_delay: Duration = Duration('1s')
	max_delay: Duration = Duration('1m')
	multiplier: float = 2.0

	def validate_attribute(self, attr_name: str, attr_value: Any, **kwargs):
		if attr_name == 'max_attempts' and attr_value < 1:
			raise ValueError('max_attempts should be at least 1')
		if attr_name == 'multiplier' and attr_value < 1:
			raise ValueError('multiplier should not be less than 1')
