# autoflake: skip_file
"""
We rely on all of our sqlalchemy models being listed here, so that we can
make sure they are all registered with the declarative base before the
schema is created.
"""

import palace.ill.sqlalchemy.model.base
import palace.ill.sqlalchemy.model.illrequest
import palace.ill.sqlalchemy.model.library
import palace.ill.sqlalchemy.model.patron
import palace.ill.sqlalchemy.model.staging
from palace.ill.sqlalchemy.model.base import Base
