from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from .models import db, User
from .schemas import CredentialsRequest

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'scoreguard game-session service'})

@main.route('/register', methods=['POST'])
def register():
    data = CredentialsRequest.model_validate(request.get_json(silent=True) or {})
    if User.query.filter_by(username=data.username).first():
        return jsonify({"success": False, "message": "Username already exists"}), 400

    new_user = User(username=data.username)
    new_user.set_password(data.password)
    db.session.add(new_user)
    db.session.commit()
    login_user(new_user)
    return jsonify({"success": True, "user": new_user.to_dict()}), 201

@main.route('/login', methods=['POST'])
def login():
    data = CredentialsRequest.model_validate(request.get_json(silent=True) or {})
    user = User.query.filter_by(username=data.username).first()
    if user and user.check_password(data.password):
        login_user(user, remember=True)
        return jsonify({"success": True, "user": user.to_dict()})
    return jsonify({"success": False, "message": "Invalid credentials"}), 401

@main.route('/check_login', methods=['GET'])
@login_required
def check_login():
    return jsonify({"success": True, "user": current_user.to_dict()})

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
