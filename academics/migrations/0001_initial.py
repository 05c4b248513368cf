import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Class',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('level_type', models.CharField(choices=[('pre_primary', 'Pre-Primary'), ('primary', 'Primary'), ('junior', 'Junior Secondary'), ('senior', 'Senior Secondary')], default='primary', max_length=20)),
                ('level_number', models.PositiveSmallIntegerField(help_text='1, 2, 3, etc.')),
                ('section', models.CharField(help_text='Stream: A, B, EAST, etc.', max_length=10)),
                ('name', models.CharField(editable=False, help_text='Auto-generated: G4-A, F3-EAST', max_length=30)),
                ('curriculum', models.CharField(blank=True, help_text='Curriculum used to grade this class (blank = school default)', max_length=50)),
                ('capacity', models.PositiveIntegerField(default=45, help_text='Maximum number of students')),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Class',
                'verbose_name_plural': 'Classes',
                'ordering': ['level_type', 'level_number', 'section'],
                'unique_together': {('level_type', 'level_number', 'section')},
            },
        ),
        migrations.CreateModel(
            name='Subject',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='e.g., Mathematics, English, Biology', max_length=100)),
                ('short_name', models.CharField(blank=True, help_text='e.g., MATH, ENG, BIO', max_length=20)),
                ('code', models.CharField(blank=True, help_text='Optional subject code', max_length=20)),
                ('is_core', models.BooleanField(default=True, help_text='Core subjects are mandatory')),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Subject',
                'verbose_name_plural': 'Subjects',
                'ordering': ['-is_core', 'name'],
            },
        ),
        migrations.CreateModel(
            name='AttendanceSession',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField(default=django.utils.timezone.now)),
                ('session_type', models.CharField(choices=[('Daily', 'Daily Register')], default='Daily', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendance_sessions', to='academics.class')),
            ],
            options={
                'ordering': ['-date'],
                'unique_together': {('class_assigned', 'date', 'session_type')},
            },
        ),
    ]
