import functools
import re
from abc import ABC, abstractmethod
from typing import Union, Tuple, Generic, Dict, TypeVar, NamedTuple

from chunkvault.utils import misc_utils

_T = TypeVar('_T')
_Number = Union[int, float]


def _parse_number(s: str) -> _Number:
	try:
		return int(s)
	except ValueError:
		pass
	try:
		value = float(s)
	except ValueError:
		raise ValueError('{!r} is not a number'.format(s)) from None
	return round(value) if value.is_integer() else value


def _split_unit(s: str) -> Tuple[_Number, str]:
	match = re.fullmatch(r'\s*([-+.\d]+)\s*(\w*)\s*', s)
	if not match:
		raise ValueError('bad value {!r}'.format(s))
	return _parse_number(match.group(1)), match.group(2)


def _normalize(x: _Number) -> _Number:
	if isinstance(x, float) and x.is_integer():
		return int(x)
	return x


class ValueUnitPair(NamedTuple):
	value: _Number
	unit: str

	def to_str(self, ndigits: int = 2) -> str:
		if ndigits >= 0 and isinstance(self.value, float):
			return f'{self.value:.{ndigits}f}{self.unit}'
		return f'{self.value}{self.unit}'


class _UnitValueBase(Generic[_T], str, ABC):
	"""
	A str subclass, so the value keeps its human-written form when serialized into the config file
	"""
	_value: _T

	@classmethod
	@abstractmethod
	def _get_unit_map(cls) -> Dict[str, _Number]:
		"""
		unit -> multiplier, ordered from the smallest unit to the largest one
		"""
		...

	@classmethod
	@functools.lru_cache
	def __get_unit_map_lowered(cls) -> Dict[str, _Number]:
		return {k.lower(): v for k, v in cls._get_unit_map().items()}

	@classmethod
	def parse_unit(cls, unit: str) -> _Number:
		ret = cls.__get_unit_map_lowered().get(unit.lower())
		if ret is None:
			raise ValueError('unknown unit {!r}'.format(unit))
		return ret

	@classmethod
	def _formatting_units(cls) -> Dict[str, _Number]:
		return cls._get_unit_map()

	@classmethod
	def _auto_format(cls, val: _Number) -> ValueUnitPair:
		if val < 0:
			uvp = cls._auto_format(-val)
			return ValueUnitPair(-uvp.value, uvp.unit)
		ret = None
		for unit, k in cls._formatting_units().items():
			if ret is None or val >= k:
				ret = ValueUnitPair(_normalize(val / k if k != 1 else val), unit)
			else:
				break
		return ret

	@classmethod
	def _precise_format(cls, val: _Number) -> ValueUnitPair:
		units = list(cls._formatting_units().items())
		if val == 0:
			return ValueUnitPair(0, units[0][0])
		for unit, k in reversed(units):
			if isinstance(val, int) and val % k == 0:
				return ValueUnitPair(val // k, unit)
		return ValueUnitPair(val, units[0][0])

	@property
	def value(self) -> _T:
		return self._value

	def auto_str(self, ndigits: int = 2) -> str:
		return self._auto_format(self._value).to_str(ndigits)

	def __repr__(self) -> str:
		return misc_utils.represent(self, attrs={'value': self._value})


class Duration(_UnitValueBase[_Number]):
	"""
	Duration in seconds. Accepts "90", "1.5s", "30m", "6h", "7d"
	"""

	__units = {
		('ms',): 1e-3,
		('s', 'sec'): 1,
		('m', 'min'): 60,
		('h', 'hour'): 60 * 60,
		('d', 'day'): 60 * 60 * 24,
		('w', 'week'): 60 * 60 * 24 * 7,
		('mon', 'month'): 60 * 60 * 24 * 30,
		('y', 'year'): 60 * 60 * 24 * 365,
	}

	@classmethod
	@functools.lru_cache
	def _get_unit_map(cls) -> Dict[str, _Number]:
		return {k: v for units, v in cls.__units.items() for k in units}

	@classmethod
	@functools.lru_cache
	def _formatting_units(cls) -> Dict[str, _Number]:
		return {u: cls._get_unit_map()[u] for u in ['s', 'm', 'h', 'd']}

	def __new__(cls, s: Union[int, float, str]):
		if isinstance(s, str):
			value, unit = _split_unit(s)
			duration = _normalize(value * cls.parse_unit(unit or 's'))
			obj = super().__new__(cls, s)
		elif isinstance(s, (int, float)):
			duration = s
			obj = super().__new__(cls, cls._precise_format(s).to_str(ndigits=-1))
		else:
			raise TypeError(type(s))
		obj._value = duration
		return obj

	@property
	def value_nano(self) -> _Number:
		return self.value * 10 ** 9


class ByteCount(_UnitValueBase[int]):
	"""
	A byte amount. Accepts "4096", "64KiB", "1MiB", "2G", "16kb"
	"""
	_bsi = {'': 1, 'Ki': 2 ** 10, 'Mi': 2 ** 20, 'Gi': 2 ** 30, 'Ti': 2 ** 40}
	_dsi = {'K': 10 ** 3, 'M': 10 ** 6, 'G': 10 ** 9, 'T': 10 ** 12}

	@classmethod
	@functools.lru_cache
	def _get_unit_map(cls) -> Dict[str, _Number]:
		return {**cls._bsi, **cls._dsi}

	@classmethod
	def _formatting_units(cls) -> Dict[str, _Number]:
		return cls._bsi

	@classmethod
	def _auto_format(cls, val: _Number) -> ValueUnitPair:
		uv = super()._auto_format(val)
		return ValueUnitPair(uv.value, uv.unit + 'B')

	def __new__(cls, s: Union[int, str]):
		if isinstance(s, str):
			text = s[:-1] if s[-1:].lower() == 'b' else s
			value, unit = _split_unit(text)
			value = int(value * cls.parse_unit(unit))
			obj = super().__new__(cls, s)
		elif isinstance(s, int):
			value = s
			uv = cls._precise_format(s)
			obj = super().__new__(cls, f'{uv.value}{uv.unit}B')
		else:
			raise TypeError(type(s))
		obj._value = value
		return obj
