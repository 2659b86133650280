"""Initial PayVAT schema: users, document folders, documents, audit logs

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-12 09:15:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e6f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    op.create_table('document_folders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('total_sales_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_purchase_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_sales_vat', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_purchase_vat', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_net_vat', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('document_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sales_document_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_document_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_document_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'year', 'month', name='uq_document_folders_user_year_month')
    )
    op.create_index(op.f('ix_document_folders_user_id'), 'document_folders', ['user_id'], unique=False)

    op.create_table('documents',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('file_data', sa.Text(), nullable=True),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('original_name', sa.String(length=512), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('is_scanned', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('scan_result', sa.Text(), nullable=True),
        sa.Column('invoice_total', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('extraction_confidence', sa.Float(), nullable=True),
        sa.Column('date_extraction_confidence', sa.Float(), nullable=True),
        sa.Column('extracted_date', sa.DateTime(), nullable=True),
        sa.Column('extracted_year', sa.Integer(), nullable=True),
        sa.Column('extracted_month', sa.Integer(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(
            ['user_id', 'extracted_year', 'extracted_month'],
            ['document_folders.user_id', 'document_folders.year', 'document_folders.month'],
            name='fk_documents_folder'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_documents_user_id'), 'documents', ['user_id'], unique=False)

    op.create_table('audit_logs',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_user_id'), 'audit_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_entity_id'), 'audit_logs', ['entity_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_audit_logs_entity_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_user_id'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_documents_user_id'), table_name='documents')
    op.drop_table('documents')
    op.drop_index(op.f('ix_document_folders_user_id'), table_name='document_folders')
    op.drop_table('document_folders')
    op.drop_table('users')
