"""
Document vault module.

- Owners upload a document once per grantee; the ciphertext is sealed with
  AES-256-GCM and only the sha256 of the plaintext is kept alongside it
- Grantees receive a signed, expiring share payload scoped to one document,
  one role and one permission tier
- Every redeem or content fetch with a document context is written to the
  append-only access log
"""
