from .api_key import ApiKey  # noqa: F401
from .event import Event  # noqa: F401
from .event_registration import EventRegistration  # noqa: F401
from .parent_child_link import ParentChildLink  # noqa: F401
from .signed_document import SignedDocument  # noqa: F401
from .template_document import TemplateDocument  # noqa: F401
