from .known_people import KnownPeopleRegistry

__all__ = ["KnownPeopleRegistry"]
