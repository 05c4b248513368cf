import django.core.validators
import django.db.models.deletion
import gradebook.models
import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0001_initial'),
        ('core', '0001_initial'),
        ('students', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Exam',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Exam name (e.g., Term 1 Mathematics CAT 1)', max_length=150)),
                ('exam_type', models.CharField(choices=[('cat', 'Continuous Assessment Test'), ('quiz', 'Quiz'), ('assignment', 'Assignment'), ('project', 'Project'), ('practical', 'Practical'), ('midterm', 'Mid-term Exam'), ('end_term', 'End of Term Exam')], default='cat', max_length=20)),
                ('total_marks', models.DecimalField(decimal_places=2, default=Decimal('100.00'), help_text='Maximum marks available', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('weight_percentage', models.DecimalField(blank=True, decimal_places=2, help_text='Weight within the subject (blank = 100)', max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(Decimal('0.01')), django.core.validators.MaxValueValidator(Decimal('100'))])),
                ('exam_date', models.DateField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='exams', to='academics.class')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='exams', to='academics.subject')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='exams', to='core.term')),
            ],
            options={
                'verbose_name': 'Exam',
                'verbose_name_plural': 'Exams',
                'db_table': 'exam',
                'ordering': ['term', 'subject', 'exam_date', 'name'],
                'indexes': [
                    models.Index(fields=['school_class', 'term'], name='exam_class_term_idx'),
                    models.Index(fields=['subject', 'term'], name='exam_subject_term_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ExamResult',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('marks_obtained', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('percentage', models.DecimalField(decimal_places=2, default=Decimal('0.00'), editable=False, max_digits=5)),
                ('is_absent', models.BooleanField(default=False)),
                ('is_exempted', models.BooleanField(default=False)),
                ('exemption_reason', models.TextField(blank=True)),
                ('teacher_comment', models.TextField(blank=True)),
                ('graded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('exam', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='gradebook.exam')),
                ('graded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='graded_results', to=settings.AUTH_USER_MODEL)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='exam_results', to='students.student')),
            ],
            options={
                'verbose_name': 'Exam Result',
                'verbose_name_plural': 'Exam Results',
                'db_table': 'exam_result',
                'ordering': ['student', 'exam'],
                'unique_together': {('exam', 'student')},
                'indexes': [
                    models.Index(fields=['student', 'exam'], name='examresult_student_exam_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ScoreCorrection',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('old_marks', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('new_marks', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('old_is_absent', models.BooleanField(default=False)),
                ('new_is_absent', models.BooleanField(default=False)),
                ('old_is_exempted', models.BooleanField(default=False)),
                ('new_is_exempted', models.BooleanField(default=False)),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('corrected_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='score_corrections', to=settings.AUTH_USER_MODEL)),
                ('result', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='corrections', to='gradebook.examresult')),
            ],
            options={
                'verbose_name': 'Score Correction',
                'verbose_name_plural': 'Score Corrections',
                'db_table': 'score_correction',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ReportCard',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('report_number', models.CharField(blank=True, max_length=50)),
                ('curriculum', models.CharField(max_length=50)),
                ('subject_results', models.JSONField(default=list)),
                ('summary', models.JSONField(blank=True, null=True)),
                ('days_present', models.PositiveIntegerField(default=0)),
                ('days_absent', models.PositiveIntegerField(default=0)),
                ('total_school_days', models.PositiveIntegerField(default=0)),
                ('fee_balance', models.DecimalField(blank=True, decimal_places=2, help_text='Outstanding fees when the card was generated (optional)', max_digits=12, null=True)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('pending_review', 'Pending Review'), ('approved', 'Approved'), ('published', 'Published'), ('archived', 'Archived')], db_index=True, default='draft', max_length=20)),
                ('class_teacher_comment', models.TextField(blank=True)),
                ('principal_comment', models.TextField(blank=True)),
                ('parent_comment', models.TextField(blank=True)),
                ('parent_acknowledged_at', models.DateTimeField(blank=True, null=True)),
                ('next_term_opens', models.DateField(blank=True, null=True)),
                ('next_term_closes', models.DateField(blank=True, null=True)),
                ('pdf_file', models.FileField(blank=True, upload_to=gradebook.models.report_card_upload_to)),
                ('pdf_generated_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
                ('archived_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('academic_year', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='report_cards', to='core.academicyear')),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('class_teacher', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('generated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('principal', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('school_class', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='report_cards', to='academics.class')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='report_cards', to='students.student')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='report_cards', to='core.term')),
            ],
            options={
                'verbose_name': 'Report Card',
                'verbose_name_plural': 'Report Cards',
                'db_table': 'report_card',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['school_class', 'term'], name='reportcard_class_term_idx'),
                    models.Index(fields=['term', 'status'], name='reportcard_term_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('student', 'term'), name='unique_report_card_per_student_term'),
                ],
            },
        ),
    ]
