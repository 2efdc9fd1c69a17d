"""
File-storage resolver for proof uploads
Turns a multipart upload (or a JSON proofUrl) into a stable proof reference
"""

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from errors import ValidationError

logger = logging.getLogger('Storage')

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
PROOF_SUBDIR = 'proofs'


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def save_proof_file(file):
    """Persist an uploaded image under UPLOAD_FOLDER/proofs and return its public path"""
    if not file or not file.filename:
        raise ValidationError('Please upload a proof image')
    if not allowed_file(file.filename):
        raise ValidationError('Only image files are allowed')

    filename = secure_filename(f"{uuid.uuid4().hex}_{file.filename}")
    folder = os.path.join(current_app.config['UPLOAD_FOLDER'], PROOF_SUBDIR)
    os.makedirs(folder, exist_ok=True)
    file.save(os.path.join(folder, filename))

    logger.info(f"📁 Stored proof upload {filename}")
    return f"/uploads/{PROOF_SUBDIR}/{filename}"


def resolve_proof_reference(request):
    """
    Returns:
        (proof_ref, description) from a multipart 'proof'/'image' file plus a
        'description' form field, or from a JSON body with proofUrl/description
    """
    file = request.files.get('proof') or request.files.get('image')
    if file is not None:
        return save_proof_file(file), request.form.get('description', '')

    data = request.get_json(silent=True) or {}
    proof_ref = data.get('proofUrl') or request.form.get('proofUrl')
    if not isinstance(proof_ref, str) or not proof_ref.strip():
        raise ValidationError('Please upload a proof image')

    description = data.get('description') or request.form.get('description', '')
    return proof_ref.strip(), description
