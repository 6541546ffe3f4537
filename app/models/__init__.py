from app.models.message import MessageRow, MediaType

__all__ = [
	"MessageRow",
	"MediaType",
]
