# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme classes.teacher_id → users.id échouent
# avec NoReferencedTableError si user.py n'est pas chargé avant class_instance.py.

from studio.models.user import User  # noqa: F401  (doit précéder class_instance)
from studio.models.student import Student  # noqa: F401
from studio.models.location import Location  # noqa: F401
from studio.models.class_instance import ClassInstance  # noqa: F401
from studio.models.enrollment import Enrollment  # noqa: F401
from studio.models.attendance import AttendanceRecord, InstanceEnrollment  # noqa: F401
from studio.models.booking import DropInBooking  # noqa: F401
from studio.models.notification import Notification  # noqa: F401
