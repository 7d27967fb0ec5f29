class MarginaliaError(ValueError):
    """Base class for failures that abort a whole merge."""


class InvalidPackageError(MarginaliaError):
    """The input bytes are not a readable DOCX (zip) package."""


class PartMissingError(MarginaliaError):
    def __init__(self, part_name: str):
        self.part_name = part_name
        super().__init__(f"This DOCX is missing {part_name}.")


class InvalidCommentsError(MarginaliaError):
    """The comment records input is not a JSON array of objects."""


class OutputCorruptError(MarginaliaError):
    """The generated package failed re-validation and must not be returned."""
