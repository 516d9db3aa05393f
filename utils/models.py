"""
SQLAlchemy models for the FabLab inventory and scheduling dashboard
"""

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ROLES = ("amministratore", "formatore", "scuola")
ACTIVITY_STATES = ("programmata", "in_corso", "conclusa", "annullata")
MOVEMENT_TYPES = ("prelievo", "restituzione")


class Profile(db.Model):
    """Profile model - a user account (admin, trainer or school contact)"""

    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nome = db.Column(db.String(120), nullable=False)
    cognome = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="formatore")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    trainer = db.relationship("Trainer", back_populates="profile", uselist=False)

    @property
    def full_name(self):
        return f"{self.nome} {self.cognome or ''}".strip()

    def to_dict(self):
        """Convert model to dictionary (never exposes the password hash)"""
        return {
            "profile_id": str(self.id),
            "nome": self.nome,
            "cognome": self.cognome,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Profile {self.email} ({self.role})>"


class Material(db.Model):
    """Material model - a trackable inventory item with a QR identifier"""

    __tablename__ = "materials"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nome = db.Column(db.String(200), nullable=False)
    descrizione = db.Column(db.Text, nullable=True)
    quantita_disponibile = db.Column(db.Integer, nullable=False, default=0)
    soglia_minima = db.Column(db.Integer, nullable=False, default=5)
    qr_code = db.Column(db.String(100), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    movements = db.relationship("Movement", backref="material", lazy="dynamic")
    consumptions = db.relationship("Consumption", backref="material", lazy="dynamic")

    __table_args__ = (
        db.CheckConstraint(
            "quantita_disponibile >= 0", name="ck_materials_quantita_non_negative"
        ),
    )

    @property
    def sotto_soglia(self):
        return self.quantita_disponibile <= self.soglia_minima

    def to_dict(self):
        """Convert model to dictionary"""
        return {
            "material_id": str(self.id),
            "nome": self.nome,
            "descrizione": self.descrizione,
            "quantita_disponibile": self.quantita_disponibile,
            "soglia_minima": self.soglia_minima,
            "qr_code": self.qr_code,
            "sotto_soglia": self.sotto_soglia,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<Material {self.nome} ({self.quantita_disponibile} pz)>"


class Trainer(db.Model):
    """Trainer model - a formatore linked to a profile"""

    __tablename__ = "trainers"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id"), unique=True, nullable=False
    )
    disponibilita = db.Column(db.String(200), nullable=True)
    ore_totali = db.Column(db.Integer, nullable=False, default=0)
    lezioni_concluse = db.Column(db.Integer, nullable=False, default=0, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    profile = db.relationship("Profile", back_populates="trainer")
    movements = db.relationship("Movement", backref="trainer", lazy="dynamic")
    activities = db.relationship("Activity", backref="trainer", lazy="dynamic")

    def to_dict(self):
        """Convert model to dictionary, flattening the linked profile"""
        profile = self.profile
        return {
            "trainer_id": str(self.id),
            "user_id": str(self.user_id),
            "nome": profile.nome if profile else "",
            "cognome": profile.cognome if profile else None,
            "nome_completo": profile.full_name if profile else "",
            "email": profile.email if profile else "",
            "disponibilita": self.disponibilita,
            "ore_totali": self.ore_totali or 0,
            "lezioni_concluse": self.lezioni_concluse or 0,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Trainer {self.id} - {self.lezioni_concluse} lezioni>"


class School(db.Model):
    """School model - a partner school"""

    __tablename__ = "schools"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nome = db.Column(db.String(200), nullable=False)
    indirizzo = db.Column(db.String(300), nullable=False)
    contatto = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    activities = db.relationship("Activity", backref="school", lazy="dynamic")

    def to_dict(self):
        return {
            "school_id": str(self.id),
            "nome": self.nome,
            "indirizzo": self.indirizzo,
            "contatto": self.contatto,
            "email": self.email,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<School {self.nome}>"


class Activity(db.Model):
    """Activity model - a scheduled lesson or workshop"""

    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    titolo = db.Column(db.String(200), nullable=False)
    descrizione = db.Column(db.Text, nullable=True)
    data = db.Column(db.Date, nullable=False, index=True)
    orario = db.Column(db.Time, nullable=False)
    stato = db.Column(db.String(20), nullable=False, default="programmata", index=True)
    scuola_id = db.Column(db.Integer, db.ForeignKey("schools.id"), nullable=True)
    formatore_id = db.Column(db.Integer, db.ForeignKey("trainers.id"), nullable=True)
    # Set once the trainer's lesson counter has been incremented for this activity
    lezione_accreditata = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    consumptions = db.relationship("Consumption", backref="activity", lazy="dynamic")

    def to_dict(self):
        """Convert model to dictionary with school and trainer names attached"""
        trainer_name = None
        if self.trainer is not None and self.trainer.profile is not None:
            trainer_name = self.trainer.profile.full_name
        return {
            "activity_id": str(self.id),
            "titolo": self.titolo,
            "descrizione": self.descrizione,
            "data": self.data.isoformat(),
            "orario": self.orario.strftime("%H:%M"),
            "stato": self.stato,
            "scuola_id": str(self.scuola_id) if self.scuola_id else None,
            "scuola_nome": self.school.nome if self.school else None,
            "formatore_id": str(self.formatore_id) if self.formatore_id else None,
            "formatore_nome": trainer_name,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Activity {self.titolo} {self.data} ({self.stato})>"


class Movement(db.Model):
    """Movement model - checkout/return ledger entry"""

    __tablename__ = "movements"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    materiale_id = db.Column(
        db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True
    )
    formatore_id = db.Column(
        db.Integer, db.ForeignKey("trainers.id"), nullable=False, index=True
    )
    tipo_movimento = db.Column(db.String(20), nullable=False)
    quantita = db.Column(db.Integer, nullable=False, default=1)
    data_prelievo = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    data_restituzione = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index(
            "ix_movements_material_trainer_tipo",
            "materiale_id",
            "formatore_id",
            "tipo_movimento",
        ),
    )

    def to_dict(self):
        trainer_name = None
        if self.trainer is not None and self.trainer.profile is not None:
            trainer_name = self.trainer.profile.full_name
        return {
            "movement_id": str(self.id),
            "materiale_id": str(self.materiale_id),
            "materiale_nome": self.material.nome if self.material else None,
            "formatore_id": str(self.formatore_id),
            "formatore_nome": trainer_name,
            "tipo_movimento": self.tipo_movimento,
            "quantita": self.quantita,
            "data_prelievo": self.data_prelievo,
            "data_restituzione": self.data_restituzione,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Movement {self.id} - {self.tipo_movimento} x{self.quantita}>"


class Consumption(db.Model):
    """Consumption model - material quantity used by an activity"""

    __tablename__ = "consumptions"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    attivita_id = db.Column(
        db.Integer, db.ForeignKey("activities.id"), nullable=False, index=True
    )
    materiale_id = db.Column(
        db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True
    )
    quantita_usata = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "consumption_id": str(self.id),
            "attivita_id": str(self.attivita_id),
            "materiale_id": str(self.materiale_id),
            "materiale_nome": self.material.nome if self.material else None,
            "quantita_usata": self.quantita_usata,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Consumption {self.id} - {self.quantita_usata}>"
