"""
Database handler for the FabLab inventory and scheduling dashboard
Handles all database operations using SQLAlchemy
"""

import logging
from datetime import date, datetime, time
from typing import Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .helpers import generate_qr_code, is_below_threshold, mask_email, top_trainers
from .models import (
    ACTIVITY_STATES,
    ROLES,
    Activity,
    Consumption,
    Material,
    Movement,
    Profile,
    School,
    Trainer,
    db,
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    """A referenced row (material, trainer, activity...) does not exist"""


class DatabaseHandler:
    """Handler for database operations via SQLAlchemy"""

    def __init__(self, app=None):
        """Initialize database handler, optionally with a Flask app"""
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize with Flask app (for factory pattern support)"""
        db.init_app(app)
        logger.info("Database handler initialized")

    def create_tables(self, app):
        """Create all tables (use flask db upgrade in production instead)"""
        with app.app_context():
            db.create_all()
        logger.info("Database tables created")

    # ==================== Profile Operations ====================

    def create_profile(self, data: Dict) -> Dict:
        """
        Create a new profile with a hashed password

        Args:
            data (dict): nome, cognome (optional), email, password, role (optional)

        Returns:
            dict: Created profile data with ID
        """
        role = data.get("role", "formatore")
        if role not in ROLES:
            raise ValueError("Ruolo non valido")

        try:
            profile = Profile(
                nome=data["nome"],
                cognome=data.get("cognome") or None,
                email=data["email"].strip().lower(),
                password_hash=generate_password_hash(data["password"]),
                role=role,
            )
            db.session.add(profile)
            db.session.commit()

            logger.info(f"Created profile: {mask_email(profile.email)} ({role})")
            return profile.to_dict()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating profile: {str(e)}")
            raise

    def get_profile_by_email(self, email: str) -> Optional[Dict]:
        profile = Profile.query.filter_by(email=email.strip().lower()).first()
        return profile.to_dict() if profile else None

    def get_profile_by_id(self, profile_id) -> Optional[Dict]:
        profile = db.session.get(Profile, int(profile_id))
        return profile.to_dict() if profile else None

    def authenticate(self, email: str, password: str) -> Optional[Dict]:
        """
        Check credentials

        Returns:
            dict or None: Profile data if the password matches, None otherwise
        """
        profile = Profile.query.filter_by(email=email.strip().lower()).first()
        if profile and check_password_hash(profile.password_hash, password):
            logger.info(f"Login: {mask_email(profile.email)}")
            return profile.to_dict()

        logger.warning(f"Failed login for {mask_email(email)}")
        return None

    # ==================== Material Operations ====================

    def create_material(self, data: Dict) -> Dict:
        """
        Create a new material, generating its QR identifier if none is given

        Args:
            data (dict): nome, descrizione, quantita_disponibile, soglia_minima, qr_code

        Returns:
            dict: Created material data with ID
        """
        quantity = int(data.get("quantita_disponibile", 0))
        threshold = int(data.get("soglia_minima", 5))
        if quantity < 0 or threshold < 0:
            raise ValueError("Quantità e soglia devono essere maggiori o uguali a zero")

        try:
            material = Material(
                nome=data["nome"],
                descrizione=data.get("descrizione") or None,
                quantita_disponibile=quantity,
                soglia_minima=threshold,
                qr_code=data.get("qr_code") or generate_qr_code(),
            )
            db.session.add(material)
            db.session.commit()

            logger.info(f"Created material: {material.nome} (QR: {material.qr_code})")
            return material.to_dict()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating material: {str(e)}")
            raise

    def get_all_materials(self) -> List[Dict]:
        """Get all materials ordered by name"""
        materials = Material.query.order_by(Material.nome).all()
        return [m.to_dict() for m in materials]

    def get_material_by_id(self, material_id) -> Optional[Dict]:
        material = db.session.get(Material, int(material_id))
        return material.to_dict() if material else None

    def get_material_by_qr(self, qr_code: str) -> Optional[Dict]:
        """
        Get material by QR payload

        Args:
            qr_code (str): Decoded QR text

        Returns:
            dict or None: Material data if found, None otherwise
        """
        material = Material.query.filter_by(qr_code=qr_code.strip()).first()

        if material:
            logger.info(f"Found material by QR {qr_code}: {material.nome}")
            return material.to_dict()

        logger.warning(f"No material found with QR: {qr_code}")
        return None

    def get_materials_below_threshold(self) -> List[Dict]:
        materials = (
            Material.query.filter(Material.quantita_disponibile <= Material.soglia_minima)
            .order_by(Material.nome)
            .all()
        )
        return [m.to_dict() for m in materials]

    # ==================== Trainer Operations ====================

    def create_trainer(self, data: Dict) -> Dict:
        """
        Link a trainer record to an existing profile

        Args:
            data (dict): user_id, disponibilita, ore_totali, lezioni_concluse
        """
        profile = db.session.get(Profile, int(data["user_id"]))
        if not profile:
            raise NotFoundError("Profilo non trovato")
        if Trainer.query.filter_by(user_id=profile.id).first():
            raise ValueError("Il profilo è già collegato a un formatore")

        try:
            trainer = Trainer(
                user_id=profile.id,
                disponibilita=data.get("disponibilita") or None,
                ore_totali=int(data.get("ore_totali", 0)),
                lezioni_concluse=int(data.get("lezioni_concluse", 0)),
            )
            db.session.add(trainer)
            db.session.commit()

            logger.info(f"Created trainer {trainer.id} for profile {profile.id}")
            return trainer.to_dict()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating trainer: {str(e)}")
            raise

    def register_trainer(self, data: Dict) -> Dict:
        """
        Create a formatore profile and its trainer record in one transaction.
        Either both rows are written or neither is.

        Args:
            data (dict): nome, cognome, email, password, plus optional
                disponibilita, ore_totali, lezioni_concluse

        Returns:
            dict: {"profile": ..., "trainer": ...}
        """
        try:
            profile = Profile(
                nome=data["nome"],
                cognome=data.get("cognome") or None,
                email=data["email"].strip().lower(),
                password_hash=generate_password_hash(data["password"]),
                role="formatore",
            )
            db.session.add(profile)
            db.session.flush()

            trainer = Trainer(
                user_id=profile.id,
                disponibilita=data.get("disponibilita") or None,
                ore_totali=int(data.get("ore_totali", 0)),
                lezioni_concluse=int(data.get("lezioni_concluse", 0)),
            )
            db.session.add(trainer)
            db.session.commit()

            logger.info(
                f"Registered trainer {trainer.id}: {mask_email(profile.email)}"
            )
            return {"profile": profile.to_dict(), "trainer": trainer.to_dict()}

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error registering trainer: {str(e)}")
            raise

    def get_all_trainers(self) -> List[Dict]:
        """Get all trainers, most completed lessons first"""
        trainers = (
            Trainer.query.join(Profile)
            .order_by(Trainer.lezioni_concluse.desc(), Profile.nome)
            .all()
        )
        return [t.to_dict() for t in trainers]

    def get_trainer_by_user(self, user_id) -> Optional[Dict]:
        """Get the trainer linked to a profile (the scanner's acting trainer)"""
        trainer = Trainer.query.filter_by(user_id=int(user_id)).first()
        return trainer.to_dict() if trainer else None

    # ==================== School Operations ====================

    def create_school(self, data: Dict) -> Dict:
        try:
            school = School(
                nome=data["nome"],
                indirizzo=data["indirizzo"],
                contatto=data.get("contatto") or None,
                email=data.get("email") or None,
            )
            db.session.add(school)
            db.session.commit()

            logger.info(f"Created school: {school.nome}")
            return school.to_dict()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating school: {str(e)}")
            raise

    def get_all_schools(self) -> List[Dict]:
        """Get all schools ordered by name"""
        return [s.to_dict() for s in School.query.order_by(School.nome).all()]

    # ==================== Activity Operations ====================

    def create_activity(self, data: Dict) -> Dict:
        """
        Schedule a new activity

        Args:
            data (dict): titolo, descrizione, data (date), orario (time),
                stato, scuola_id, formatore_id

        Returns:
            dict: Created activity data with ID
        """
        stato = data.get("stato") or "programmata"
        if stato not in ACTIVITY_STATES:
            raise ValueError("Stato attività non valido")
        if not isinstance(data.get("data"), date) or not isinstance(
            data.get("orario"), time
        ):
            raise ValueError("Data e orario sono obbligatori")

        scuola_id = data.get("scuola_id")
        formatore_id = data.get("formatore_id")
        if scuola_id and not db.session.get(School, int(scuola_id)):
            raise NotFoundError("Scuola non trovata")
        if formatore_id and not db.session.get(Trainer, int(formatore_id)):
            raise NotFoundError("Formatore non trovato")

        try:
            activity = Activity(
                titolo=data["titolo"],
                descrizione=data.get("descrizione") or None,
                data=data["data"],
                orario=data["orario"],
                stato=stato,
                scuola_id=int(scuola_id) if scuola_id else None,
                formatore_id=int(formatore_id) if formatore_id else None,
            )
            db.session.add(activity)
            db.session.commit()

            logger.info(f"Created activity: {activity.titolo} on {activity.data}")
            return activity.to_dict()

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating activity: {str(e)}")
            raise

    def get_all_activities(self) -> List[Dict]:
        """Get all activities ordered by date, then time"""
        activities = Activity.query.order_by(Activity.data, Activity.orario).all()
        return [a.to_dict() for a in activities]

    def get_activity_by_id(self, activity_id) -> Optional[Dict]:
        activity = db.session.get(Activity, int(activity_id))
        return activity.to_dict() if activity else None

    def update_activity_status(
        self, activity_id, stato: str, ore: Optional[int] = None
    ) -> Dict:
        """
        Change an activity's state

        Moving an activity into "conclusa" credits its trainer with one
        completed lesson and, when given, the lesson hours. An activity is
        credited at most once, even if it is reopened and concluded again.

        Raises:
            NotFoundError: Unknown activity
            ValueError: Unknown state or negative hours
        """
        if stato not in ACTIVITY_STATES:
            raise ValueError("Stato attività non valido")
        if ore is not None and ore < 0:
            raise ValueError("Le ore non possono essere negative")

        try:
            activity = db.session.get(Activity, int(activity_id))
            if not activity:
                raise NotFoundError("Attività non trovata")

            previous = activity.stato
            activity.stato = stato

            if (
                stato == "conclusa"
                and previous != "conclusa"
                and not activity.lezione_accreditata
                and activity.trainer
            ):
                activity.trainer.lezioni_concluse = (
                    activity.trainer.lezioni_concluse or 0
                ) + 1
                if ore:
                    activity.trainer.ore_totali = (activity.trainer.ore_totali or 0) + ore
                activity.lezione_accreditata = True

            db.session.commit()
            logger.info(f"Activity {activity_id}: {previous} -> {stato}")
            return activity.to_dict()

        except ValueError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error updating activity status: {str(e)}")
            raise

    # ==================== Atomic Movement Operations ====================

    def _lock_material(self, material_id) -> Optional[Material]:
        # SELECT ... FOR UPDATE (no-op on SQLite)
        return db.session.execute(
            db.select(Material).filter_by(id=int(material_id)).with_for_update()
        ).scalar_one_or_none()

    def checkout_material_atomic(
        self, material_id, trainer_id, quantita: int = 1
    ) -> Dict:
        """
        Atomically record a checkout (prelievo).
        Locks the material row, checks stock, writes the ledger entry and
        decrements the available quantity in one transaction.

        Args:
            material_id: Material ID
            trainer_id: Trainer ID
            quantita (int): Units taken

        Returns:
            dict: {"movement": ..., "material": ...}

        Raises:
            NotFoundError: If material or trainer not found
            ValueError: If stock is insufficient
        """
        try:
            material = self._lock_material(material_id)
            trainer = db.session.get(Trainer, int(trainer_id))

            if not material:
                raise NotFoundError("Materiale non trovato")
            if not trainer:
                raise NotFoundError("Profilo formatore non trovato")
            if material.quantita_disponibile - quantita < 0:
                raise ValueError(
                    f"Quantità non disponibile: {material.quantita_disponibile} pz rimasti"
                )

            movement = Movement(
                materiale_id=material.id,
                formatore_id=trainer.id,
                tipo_movimento="prelievo",
                quantita=quantita,
                data_prelievo=datetime.utcnow(),
            )
            material.quantita_disponibile -= quantita

            db.session.add(movement)
            db.session.commit()

            logger.info(
                f"Atomic checkout: trainer {trainer.id} took {quantita} x material {material.id}"
            )
            return {"movement": movement.to_dict(), "material": material.to_dict()}

        except ValueError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error in atomic checkout: {str(e)}")
            raise

    def return_material_atomic(
        self, material_id, trainer_id, quantita: int = 1
    ) -> Dict:
        """
        Atomically record a return (restituzione).
        Writes the ledger entry, closes the trainer's oldest open checkout of
        the material and increments the available quantity.

        Raises:
            NotFoundError: If material or trainer not found
        """
        try:
            material = self._lock_material(material_id)
            trainer = db.session.get(Trainer, int(trainer_id))

            if not material:
                raise NotFoundError("Materiale non trovato")
            if not trainer:
                raise NotFoundError("Profilo formatore non trovato")

            now = datetime.utcnow()
            open_checkout = (
                Movement.query.filter_by(
                    materiale_id=material.id,
                    formatore_id=trainer.id,
                    tipo_movimento="prelievo",
                    data_restituzione=None,
                )
                .order_by(Movement.data_prelievo, Movement.id)
                .first()
            )
            if open_checkout:
                open_checkout.data_restituzione = now

            movement = Movement(
                materiale_id=material.id,
                formatore_id=trainer.id,
                tipo_movimento="restituzione",
                quantita=quantita,
                data_prelievo=open_checkout.data_prelievo if open_checkout else now,
                data_restituzione=now,
            )
            material.quantita_disponibile += quantita

            db.session.add(movement)
            db.session.commit()

            logger.info(
                f"Atomic return: trainer {trainer.id} returned {quantita} x material {material.id}"
            )
            return {"movement": movement.to_dict(), "material": material.to_dict()}

        except ValueError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error in atomic return: {str(e)}")
            raise

    def get_recent_movements(self, limit: int = 10) -> List[Dict]:
        """Get the most recent ledger entries"""
        movements = (
            Movement.query.order_by(Movement.created_at.desc(), Movement.id.desc())
            .limit(limit)
            .all()
        )
        return [m.to_dict() for m in movements]

    def get_movements_filtered(
        self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> List[Dict]:
        """
        Get ledger entries within a date range (None = no bound), oldest first
        """
        query = Movement.query
        if start_date:
            query = query.filter(Movement.created_at >= start_date)
        if end_date:
            query = query.filter(Movement.created_at <= end_date)
        movements = query.order_by(Movement.created_at, Movement.id).all()
        return [m.to_dict() for m in movements]

    # ==================== Consumption Operations ====================

    def record_consumption_atomic(
        self, activity_id, material_id, quantita_usata: int
    ) -> Dict:
        """
        Atomically record material consumed by an activity and decrement stock

        Raises:
            NotFoundError: If activity or material not found
            ValueError: If stock is insufficient
        """
        try:
            activity = db.session.get(Activity, int(activity_id))
            material = self._lock_material(material_id)

            if not activity:
                raise NotFoundError("Attività non trovata")
            if not material:
                raise NotFoundError("Materiale non trovato")
            if material.quantita_disponibile - quantita_usata < 0:
                raise ValueError(
                    f"Quantità non disponibile: {material.quantita_disponibile} pz rimasti"
                )

            consumption = Consumption(
                attivita_id=activity.id,
                materiale_id=material.id,
                quantita_usata=quantita_usata,
            )
            material.quantita_disponibile -= quantita_usata

            db.session.add(consumption)
            db.session.commit()

            logger.info(
                f"Consumption: activity {activity.id} used {quantita_usata} x material {material.id}"
            )
            return {"consumption": consumption.to_dict(), "material": material.to_dict()}

        except ValueError:
            db.session.rollback()
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error recording consumption: {str(e)}")
            raise

    def get_consumptions_for_activity(self, activity_id) -> List[Dict]:
        consumptions = (
            Consumption.query.filter_by(attivita_id=int(activity_id))
            .order_by(Consumption.created_at)
            .all()
        )
        return [c.to_dict() for c in consumptions]

    # ==================== Dashboard ====================

    def get_dashboard_stats(self, leaderboard_size: int = 5) -> Dict:
        """
        Aggregate the dashboard cards and the trainer leaderboard

        Returns:
            dict: totale_materiali, materiali_sotto_soglia, totale_formatori,
                attivita_programmate, formatori_attivi
        """
        materials = self.get_all_materials()
        trainers = self.get_all_trainers()
        planned = Activity.query.filter_by(stato="programmata").count()

        return {
            "totale_materiali": len(materials),
            "materiali_sotto_soglia": sum(1 for m in materials if is_below_threshold(m)),
            "totale_formatori": len(trainers),
            "attivita_programmate": planned,
            "formatori_attivi": top_trainers(trainers, leaderboard_size),
        }
