from typing import Union, Iterator, Iterable, TypeVar
from xloop import xloop, DEFAULT_NOT_ITERATE

T = TypeVar("T")


def loop(*args: Union[Iterable[T], T]) -> Iterator[T]:
    return xloop(*args, not_iterate=[*DEFAULT_NOT_ITERATE, dict])


def str_list(*args: Union[Iterable[str], str]) -> list:
    """ Flattens args into a list of non-empty strings (a lone `str` is not iterated). """
    return [v for v in loop(*args) if v]
