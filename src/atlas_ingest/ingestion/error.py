class AtlasIngestException(Exception):
    """
    Generic exception for the atlas_ingest library
    """


class RunStartupError(AtlasIngestException):
    """
    Raised before any feed job is dispatched when the run can not start at all,
    either because the registry can not be read or the store can not be reached
    """


class DocumentParseError(AtlasIngestException):
    """
    A registry document could not be parsed. Only that document is skipped.
    """

    def __init__(self, source: str, reason: str):
        message = f"Unable to parse registry document {source}: {reason}"
        super().__init__(message)
        self.source = source
        self.reason = reason


class FeedParseError(AtlasIngestException):
    """
    A feed archive could not be turned into an entity graph. The feed job is
    marked failed and the error is written to the per feed error table.
    """

    def __init__(self, feed_id: str, reason: str):
        message = f"{feed_id} is not a valid gtfs feed: {reason}"
        super().__init__(message)
        self.feed_id = feed_id
        self.reason = reason


class GeometryDegenerateError(AtlasIngestException):
    """
    A path has too few distinct points after cleanup to form a line string
    """

    def __init__(self, feed_id: str, path_id: str, point_count: int):
        message = f"Shape {path_id} in {feed_id} has {point_count} distinct points, at least 2 required"
        super().__init__(message)
        self.feed_id = feed_id
        self.path_id = path_id
        self.point_count = point_count


class PersistenceError(AtlasIngestException):
    """
    General Error for failed writes or reads against the store
    """


class TransientPersistenceError(PersistenceError):
    """
    Connection level failure that outlasted the retry budget
    """


class ConstraintPersistenceError(PersistenceError):
    """
    Constraint or upsert violation. Upserts are keyed on primary keys, so this
    indicates bad input data for a single feed.
    """
