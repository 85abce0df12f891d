"""Exception types raised by the database."""


class DatabaseError(Exception):
    pass


class ValueError_(DatabaseError, ValueError):
    pass


class InternalError(DatabaseError):
    pass