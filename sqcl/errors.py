"""
Exceptions thrown by sqcl. Separated, so that the lower-level modules (cache,
database backends) don't have to import the command-line module.
"""

# pylint: disable=too-few-public-methods


class SQCLException(Exception):
    """
    Base class for exceptions thrown by sqcl. Also thrown explicitly for
    certain errors in the shell.
    """


class AbortError(SQCLException):
    """
    Thrown to force an abort with a non-zero exit code.
    """


class TooManyMatchesError(SQCLException):
    """
    Thrown to indicate that a database URL specification matched too many
    entries in the configuration file.
    """


class UsageError(SQCLException):
    """
    Thrown when an internal command is malformed: unknown command, missing
    argument, or a bad argument value.
    """


class UnsupportedDriverError(SQCLException):
    """
    Thrown when there's no dialect for the database engine in use.
    """


class ConnectorError(SQCLException):
    """
    Thrown when connecting to, pinging, or querying the database fails.
    """


class QueryTimeoutError(ConnectorError, TimeoutError):
    """
    Thrown when a database call doesn't finish before its deadline.
    """


class MetadataError(SQCLException):
    """
    Thrown when the metadata source can't list tables, columns or databases.
    """


class MetadataTimeoutError(MetadataError, TimeoutError):
    """
    Thrown when a metadata fetch doesn't finish before the caller's deadline.
    """
