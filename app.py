# app.py

import hmac
import json
import logging
import os
import re
import secrets
from datetime import datetime, date
from functools import wraps

import click
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthError, RosterError, StoreError, ValidationError
from extraction_service import extract_roster, get_extraction_client
from schedule_view import build_schedule, parse_month, visible_window
from shift_service import ShiftCatalog, migrate_shift_times, on_duty, current_shift, shift_times_document

# --- App Initialization, Config, and Extensions ---
app = Flask(__name__)
CORS(app)
logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s:%(message)s')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///roster.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['DEFAULT_ADMIN_PASSWORD'] = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin')
app.config['GEMINI_API_KEY'] = os.environ.get('GEMINI_API_KEY')
app.config['GEMINI_MODEL'] = os.environ.get('GEMINI_MODEL', 'gemini-3-flash-preview')
app.config['MAX_CONTENT_LENGTH'] = 50 * 1024 * 1024
app.json.sort_keys = False  # shift windows are matched in insertion order
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# --- Constants ---
DATE_REGEX = r'^\d{4}-\d{2}-\d{2}$'
PASSWORD_HASH_PREFIXES = ('scrypt:', 'pbkdf2:')
ADMIN_PASSWORD_KEY = 'admin_password'
SHIFT_TIMES_KEY = 'shift_times'
ADMIN_TOKEN_KEY = 'admin_token'


# --- Decorators for Error Handling and Admin Access ---
def api_error_handler(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try: return f(*args, **kwargs)
        except RosterError as e:
            logging.warning(f"Endpoint '{f.__name__}' rejected request: {e.message}")
            return jsonify({"success": False, "message": e.message}), e.status_code
        except Exception as e:
            logging.error(f"An error occurred in endpoint '{f.__name__}': {e}", exc_info=True)
            return jsonify({"success": False, "message": "An unexpected server error occurred."}), 500
    return decorated_function


def require_admin(f):
    """Checks the bearer token issued by /api/login."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        token = header[len('Bearer '):] if header.startswith('Bearer ') else ''
        stored = get_setting(ADMIN_TOKEN_KEY)
        if not token or not stored or not hmac.compare_digest(stored.encode(), token.encode()):
            raise AuthError("Admin login required.")
        return f(*args, **kwargs)
    return decorated_function


# --- Database Models ---
class RosterEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False, index=True)
    engineer_name = db.Column(db.String(120), nullable=False)
    shift_type = db.Column(db.String(60), nullable=False)
    __table_args__ = (db.UniqueConstraint('date', 'engineer_name', name='uniq_roster_date_engineer'),)

    def to_dict(self):
        return {"date": self.date, "engineer_name": self.engineer_name, "shift_type": self.shift_type}


class Setting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False)


# --- Helper Functions ---
def current_time():
    return datetime.now()


def commit_or_raise(message):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"{message}: {e}", exc_info=True)
        raise StoreError(message) from e


def get_setting(key):
    row = Setting.query.filter_by(key=key).first()
    return row.value if row else None


def set_setting(key, value):
    row = Setting.query.filter_by(key=key).first()
    if row: row.value = value
    else: db.session.add(Setting(key=key, value=value))


def delete_setting(key):
    Setting.query.filter_by(key=key).delete()


def initialize_defaults():
    """Seeds the admin password and shift windows when they are absent."""
    if get_setting(ADMIN_PASSWORD_KEY) is None:
        set_setting(ADMIN_PASSWORD_KEY, generate_password_hash(app.config['DEFAULT_ADMIN_PASSWORD']))
        logging.info("Seeded default admin password.")
    if get_setting(SHIFT_TIMES_KEY) is None:
        set_setting(SHIFT_TIMES_KEY, json.dumps(shift_times_document(ShiftCatalog.default())))
        logging.info("Seeded default shift times.")
    commit_or_raise("Failed to seed default settings")


def init_db():
    with app.app_context():
        db.create_all()
        initialize_defaults()


def load_shift_catalog():
    raw = get_setting(SHIFT_TIMES_KEY)
    if raw is None: return ShiftCatalog.default()
    stored = json.loads(raw)
    document = migrate_shift_times(stored)
    if document is not stored:
        set_setting(SHIFT_TIMES_KEY, json.dumps(document))
        commit_or_raise("Failed to migrate shift times")
        logging.info(f"Migrated shift times to schema version {document['schema_version']}.")
    return ShiftCatalog.from_mapping(document['windows'])


def check_admin_password(password):
    stored = get_setting(ADMIN_PASSWORD_KEY)
    if not isinstance(password, str) or not password or stored is None: return False
    if stored.startswith(PASSWORD_HASH_PREFIXES):
        return check_password_hash(stored, password)
    # Plaintext value left by an older deployment; upgrade it on first match.
    if not hmac.compare_digest(stored.encode(), password.encode()): return False
    set_setting(ADMIN_PASSWORD_KEY, generate_password_hash(password))
    commit_or_raise("Failed to upgrade admin password")
    logging.info("Upgraded stored admin password to a salted hash.")
    return True


def validate_roster_batch(data):
    if not isinstance(data, list): raise ValidationError("Invalid data: expected a list of roster rows.")
    rows = []
    for i, item in enumerate(data):
        if not isinstance(item, dict): raise ValidationError(f"Roster row {i} must be an object.")
        day, name, shift_type = item.get('date'), item.get('engineer_name'), item.get('shift_type')
        if not isinstance(day, str) or not re.match(DATE_REGEX, day):
            raise ValidationError(f"Roster row {i} has an invalid date; use YYYY-MM-DD.")
        try: date.fromisoformat(day)
        except ValueError: raise ValidationError(f"Roster row {i} has an invalid date; use YYYY-MM-DD.")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Roster row {i} is missing engineer_name.")
        if not isinstance(shift_type, str) or not shift_type.strip():
            raise ValidationError(f"Roster row {i} is missing shift_type.")
        rows.append({"date": day, "engineer_name": name, "shift_type": shift_type})
    return rows


def upsert_roster_batch(data):
    """Replace-or-insert every row on (date, engineer_name) in one transaction.

    The whole batch is validated before anything is written. Repeated keys in
    the same batch resolve to the last row. Returns the number of distinct
    entries written.
    """
    rows = validate_roster_batch(data)
    if not rows: return 0
    latest = {}
    for row in rows: latest[(row['date'], row['engineer_name'])] = row['shift_type']
    dates = {day for day, _ in latest}
    try:
        existing = {(e.date, e.engineer_name): e for e in RosterEntry.query.filter(RosterEntry.date.in_(dates)).all()}
        for (day, name), shift_type in latest.items():
            entry = existing.get((day, name))
            if entry: entry.shift_type = shift_type
            else: db.session.add(RosterEntry(date=day, engineer_name=name, shift_type=shift_type))
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Error saving roster: {e}", exc_info=True)
        raise StoreError("Failed to save roster") from e
    commit_or_raise("Failed to save roster")
    logging.info(f"Saved roster batch: {len(latest)} entries from {len(rows)} rows.")
    return len(latest)


def query_roster(day=None):
    query = RosterEntry.query
    if day: query = query.filter_by(date=day)
    return [e.to_dict() for e in query.all()]


def query_roster_between(start_str, end_str):
    return [e.to_dict() for e in RosterEntry.query.filter(RosterEntry.date.between(start_str, end_str)).all()]


# --- API Endpoints ---
@app.route("/api/login", methods=['POST'])
@api_error_handler
def login():
    payload = request.get_json(silent=True) or {}
    password = payload.get('password') if isinstance(payload, dict) else None
    if not check_admin_password(password): raise AuthError("Invalid password")
    token = secrets.token_hex(16)
    set_setting(ADMIN_TOKEN_KEY, token)
    commit_or_raise("Failed to start admin session")
    logging.info("Admin logged in.")
    return jsonify({"success": True, "token": token})

@app.route("/api/roster", methods=['GET'])
@api_error_handler
def get_roster():
    return jsonify(query_roster(request.args.get('date')))

@app.route("/api/roster/confirm", methods=['POST'])
@api_error_handler
@require_admin
def confirm_roster():
    payload = request.get_json(silent=True)
    data = payload.get('data') if isinstance(payload, dict) else None
    saved = upsert_roster_batch(data)
    return jsonify({"success": True, "saved": saved})

@app.route("/api/roster/extract", methods=['POST'])
@api_error_handler
@require_admin
def extract_roster_preview():
    upload = request.files.get('file')
    if upload is None or not upload.filename: raise ValidationError("No roster image uploaded.")
    client = get_extraction_client(app.config['GEMINI_API_KEY'])
    rows = extract_roster(client, app.config['GEMINI_MODEL'], upload.read(), upload.mimetype or 'application/octet-stream')
    return jsonify({"success": True, "data": rows})

@app.route("/api/settings", methods=['GET', 'POST'])
@api_error_handler
def handle_settings():
    if request.method == 'GET': return jsonify(load_shift_catalog().to_mapping())
    return update_settings()

@require_admin
def update_settings():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict): raise ValidationError("Invalid settings data.")
    shift_times, admin_password = payload.get('shift_times'), payload.get('admin_password')
    if shift_times is None and admin_password is None: raise ValidationError("Nothing to update.")
    catalog = ShiftCatalog.from_mapping(shift_times) if shift_times is not None else None
    if admin_password is not None and (not isinstance(admin_password, str) or not admin_password.strip()):
        raise ValidationError("Admin password cannot be empty.")
    if catalog is not None:
        set_setting(SHIFT_TIMES_KEY, json.dumps(shift_times_document(catalog)))
    if admin_password is not None:
        set_setting(ADMIN_PASSWORD_KEY, generate_password_hash(admin_password))
        delete_setting(ADMIN_TOKEN_KEY)
    commit_or_raise("Failed to update settings")
    logging.info(f"Settings updated: shift_times={catalog is not None}, admin_password={admin_password is not None}.")
    return jsonify({"success": True})

@app.route("/api/current-shift", methods=['GET'])
@api_error_handler
def get_current_shift():
    now = current_time()
    catalog = load_shift_catalog()
    todays_roster = query_roster(now.strftime('%Y-%m-%d'))
    return jsonify({"currentShift": current_shift(now, catalog), "onDuty": on_duty(now, todays_roster, catalog)})

@app.route("/api/schedule", methods=['GET'])
@api_error_handler
def get_schedule():
    now = current_time()
    month_str = request.args.get('month', now.strftime('%Y-%m'))
    try: year, month = parse_month(month_str)
    except ValueError: raise ValidationError("Month must be in YYYY-MM format.")
    _, month_end = visible_window(year, month, now.date())
    entries = query_roster_between(f"{year:04d}-{month:02d}-01", month_end.strftime('%Y-%m-%d'))
    return jsonify(build_schedule(entries, year, month, now, load_shift_catalog()))


@app.cli.command('init-db')
def init_db_command():
    """Create tables and seed default settings."""
    init_db()
    click.echo("Database initialized.")


if __name__ == "__main__":
    init_db()
    app.run(host='0.0.0.0', port=5000, debug=True)
