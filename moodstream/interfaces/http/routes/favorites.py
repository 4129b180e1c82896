"""Favorite marks consumed by retention cleanup."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify


favorite_bp = Blueprint('favorite_bp', __name__, url_prefix='/api/favorites')


def get_favorites_store():
    return current_app.extensions['favorites_store']


@favorite_bp.route('', methods=['GET'])
def list_favorites():
    favorites = get_favorites_store().list_favorites()
    return jsonify({'items': [fav.to_dict() for fav in favorites], 'total': len(favorites)}), 200


@favorite_bp.route('/<string:track_id>', methods=['GET'])
def favorite_status(track_id: str):
    return jsonify({'track_id': track_id, 'favorited': get_favorites_store().is_favorite(track_id)}), 200


@favorite_bp.route('/<string:track_id>', methods=['POST'])
def add_favorite(track_id: str):
    favorite, created = get_favorites_store().add(track_id.strip())
    return jsonify({'favorited': True, 'favorite': favorite.to_dict()}), 201 if created else 200


@favorite_bp.route('/<string:track_id>', methods=['DELETE'])
def remove_favorite(track_id: str):
    if not get_favorites_store().remove(track_id):
        return jsonify({'error': 'not_found'}), 404
    return jsonify({'favorited': False, 'favorite': None}), 200


__all__ = ['favorite_bp']
